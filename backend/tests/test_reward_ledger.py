"""Tests for wallet crediting."""

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql

from civictrack.core.exceptions import NotFound
from civictrack.models.notification import NotificationType
from civictrack.models.user import WalletTransaction
from civictrack.services.reward_ledger import RewardLedger, credit_statement
from tests.fakes import FakeDispatcher


def session_returning(balance):
    db = AsyncMock()
    db.add = MagicMock()
    result = MagicMock()
    result.scalar_one_or_none.return_value = balance
    db.execute.return_value = result
    return db


def test_credit_is_an_atomic_increment():
    sql = str(credit_statement(uuid.uuid4(), 1).compile(dialect=postgresql.dialect()))
    assert "wallet_balance=(users.wallet_balance +" in sql
    assert "RETURNING users.wallet_balance" in sql


@pytest.mark.asyncio
async def test_credit_records_transaction_and_notifies():
    db = session_returning(1)
    dispatcher = FakeDispatcher()
    user_id, issue_id = uuid.uuid4(), uuid.uuid4()

    balance = await RewardLedger(db, dispatcher, coins=1).credit_first_acknowledgment(user_id, issue_id)

    assert balance == 1
    transaction = db.add.call_args.args[0]
    assert isinstance(transaction, WalletTransaction)
    assert transaction.delta == 1
    assert transaction.issue_id == issue_id
    [notice] = dispatcher.for_user(user_id, NotificationType.WALLET)
    assert notice["issue_id"] == issue_id


@pytest.mark.asyncio
async def test_unknown_user():
    dispatcher = FakeDispatcher()
    with pytest.raises(NotFound):
        await RewardLedger(session_returning(None), dispatcher).credit_first_acknowledgment(uuid.uuid4())
    assert dispatcher.sent == []
