"""
Citizen wallet crediting.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from civictrack.core.config import settings
from civictrack.core.exceptions import NotFound
from civictrack.models.notification import NotificationType
from civictrack.models.user import User, WalletTransaction
from civictrack.services.notification_dispatcher import Audience, NotificationDispatcher

logger = logging.getLogger(__name__)


def credit_statement(user_id: UUID, coins: int):
    return (
        update(User)
        .where(User.id == user_id)
        .values(
            wallet_balance=User.wallet_balance + coins,
            updated_at=datetime.now(timezone.utc),
        )
        .returning(User.wallet_balance)
    )


class RewardLedger:
    """
    Appends wallet transactions and keeps the balance in step.

    The caller guarantees one credit per issue: it only credits on the
    PENDING -> ACKNOWLEDGED edge, which an issue crosses at most once.
    """

    def __init__(
        self,
        db: AsyncSession,
        dispatcher: NotificationDispatcher,
        coins: Optional[int] = None,
        description: Optional[str] = None,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.coins = settings.REWARD_COINS_PER_ACKNOWLEDGMENT if coins is None else coins
        self.description = description or settings.REWARD_DESCRIPTION

    async def credit_first_acknowledgment(
        self, user_id: UUID, issue_id: Optional[UUID] = None
    ) -> int:
        """Credit the reporter and return the new balance."""
        result = await self.db.execute(credit_statement(user_id, self.coins))
        balance = result.scalar_one_or_none()
        if balance is None:
            raise NotFound("User", user_id)

        self.db.add(
            WalletTransaction(
                user_id=user_id,
                delta=self.coins,
                description=self.description,
                issue_id=issue_id,
                created_at=datetime.now(timezone.utc),
            )
        )
        await self.db.flush()

        await self.dispatcher.notify(
            Audience.user(user_id),
            title="Wallet credited",
            message=f"You earned {self.coins} coin(s). {self.description}.",
            type=NotificationType.WALLET,
            issue_id=issue_id,
        )
        logger.info("Credited %s coin(s) to user %s (balance=%s)", self.coins, user_id, balance)
        return balance
