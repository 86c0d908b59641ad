"""Idempotent credit/debit ledger.

Every movement carries an idempotency key. Replaying a key returns the
transaction recorded the first time and never moves money twice, which is what
makes payout and refund retries safe.
"""

import logging
from typing import List

from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError, TimeoutError
from sqlalchemy.ext.asyncio import async_sessionmaker

from src.crud import CreateData, ReadData, UpdateData
from src.domain.errors import InsufficientFunds, InvalidInput, LedgerUnavailable
from src.models.schema_models import LedgerTransactionSchema

TRANSIENT_DB_ERRORS = (OperationalError, InterfaceError, TimeoutError)


def check_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidInput(f"ledger amount must be a positive integer, got {amount}")


def stake_key(game_id, entry_id) -> str:
    return f"{game_id}:stake:{entry_id}"


def rejected_entry_key(game_id, entry_id) -> str:
    return f"{game_id}:reject:{entry_id}"


def payout_key(game_id) -> str:
    return f"{game_id}:payout"


def refund_key(game_id, participant_id: str) -> str:
    return f"{game_id}:refund:{participant_id}"


class SqlLedger:
    def __init__(self, Session: async_sessionmaker):
        self.Session: async_sessionmaker = Session

    async def credit(
        self, participant_id: str, amount: int, idempotency_key: str, description: str | None = None
    ) -> LedgerTransactionSchema:
        """Add amount to the participant's balance once per idempotency key"""
        check_amount(amount)
        return await self._apply(participant_id, amount, idempotency_key, "credit", description)

    async def debit(
        self, participant_id: str, amount: int, idempotency_key: str, description: str | None = None
    ) -> LedgerTransactionSchema:
        """Take amount from the participant's balance once per idempotency key

        Raises:
            InsufficientFunds: the balance does not cover the amount
        """
        check_amount(amount)
        return await self._apply(participant_id, -amount, idempotency_key, "debit", description)

    async def balance(self, participant_id: str) -> int:
        try:
            async with self.Session() as session:
                account = await ReadData.read_account(participant_id, session)
        except TRANSIENT_DB_ERRORS as e:
            raise LedgerUnavailable("ledger unavailable") from e
        return 0 if account is None else account.balance

    async def transactions(self, participant_id: str, limit: int = 50) -> List[LedgerTransactionSchema]:
        try:
            async with self.Session() as session:
                rows = await ReadData.read_transactions(participant_id, session, limit)
        except TRANSIENT_DB_ERRORS as e:
            raise LedgerUnavailable("ledger unavailable") from e
        return [LedgerTransactionSchema.model_validate(row) for row in rows]

    async def _apply(
        self,
        participant_id: str,
        delta: int,
        idempotency_key: str,
        kind: str,
        description: str | None,
    ) -> LedgerTransactionSchema:
        if not participant_id:
            raise InvalidInput("participant id must not be empty")
        if not idempotency_key:
            raise InvalidInput("idempotency key is required")
        try:
            return await self._apply_once(participant_id, delta, idempotency_key, kind, description)
        except IntegrityError:
            # A concurrent call with the same key (or first use of the account) won the insert.
            logging.info(f"Ledger {kind} {idempotency_key} raced, replaying")
            return await self._apply_once(participant_id, delta, idempotency_key, kind, description)
        except TRANSIENT_DB_ERRORS as e:
            logging.warning(f"Ledger {kind} {idempotency_key} failed: {e}")
            raise LedgerUnavailable("ledger unavailable") from e

    async def _apply_once(
        self,
        participant_id: str,
        delta: int,
        idempotency_key: str,
        kind: str,
        description: str | None,
    ) -> LedgerTransactionSchema:
        async with self.Session() as session:
            async with session.begin():
                existing = await ReadData.read_transaction(idempotency_key, session)
                if existing is not None:
                    if existing.participant_id != participant_id or existing.amount != delta:
                        raise InvalidInput(f"idempotency key {idempotency_key} reused for a different movement")
                    return LedgerTransactionSchema.model_validate(existing)

                await UpdateData.ensure_account(participant_id, session)
                new_balance = await UpdateData.adjust_balance(participant_id, delta, session)
                if new_balance is None:
                    raise InsufficientFunds(f"balance does not cover {-delta}")
                transaction = await CreateData.add_ledger_transaction(
                    idempotency_key, participant_id, delta, kind, description, session
                )
                logging.info(f"Ledger {kind} {participant_id} {delta:+d} ({idempotency_key})")
                return LedgerTransactionSchema.model_validate(transaction)
