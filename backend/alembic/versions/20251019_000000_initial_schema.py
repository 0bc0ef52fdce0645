"""Initial CivicTrack schema: users, departments, issues, notifications."""

from __future__ import annotations

from alembic import op

from civictrack.core.database import Base

import civictrack.models  # noqa: F401

revision = "20251019_000000"
down_revision = None
branch_labels = None
depends_on = None

ENUMS = ("user_role", "issue_category", "issue_status", "issue_priority", "notification_type")


def upgrade() -> None:
    """Create schema; the geography column brings its own GiST index."""
    op.execute("CREATE EXTENSION IF NOT EXISTS postgis")

    bind = op.get_bind()
    Base.metadata.create_all(bind=bind)


def downgrade() -> None:
    bind = op.get_bind()
    Base.metadata.drop_all(bind=bind)
    for enum_name in ENUMS:
        op.execute(f"DROP TYPE IF EXISTS {enum_name}")
