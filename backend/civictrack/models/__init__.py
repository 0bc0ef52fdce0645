"""
SQLAlchemy database models.
"""

from civictrack.models.user import User, UserRole, WalletTransaction
from civictrack.models.department import Department
from civictrack.models.issue import (
    Issue,
    IssueCategory,
    IssuePriority,
    IssueStatus,
    MediaType,
)
from civictrack.models.notification import (
    Notification,
    NotificationArchive,
    NotificationRead,
    NotificationType,
)

__all__ = [
    "User",
    "UserRole",
    "WalletTransaction",
    "Department",
    "Issue",
    "IssueCategory",
    "IssuePriority",
    "IssueStatus",
    "MediaType",
    "Notification",
    "NotificationArchive",
    "NotificationRead",
    "NotificationType",
]
