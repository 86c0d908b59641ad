"""Session-level data access for games, entries and the ledger.

Nothing in here commits: the caller owns the transaction (``session.begin()``).
Every state change is a conditional UPDATE on the expected prior state, so two
writers racing on the same game cannot both succeed.
"""

from datetime import datetime
from typing import List, Sequence
from uuid import UUID

from sqlalchemy import desc, select, update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession
from sqlalchemy.orm import selectinload

import src.models.basic_authentication_shemas  # noqa: F401  registers the users table
from src.models.dc_models import GameKind, GameState
from src.models.schema_models import AddEntryRequest, CreateGameRequest, StartTimerRequest
from src.models.schemas import Base, Game, GameEntry, LedgerAccount, LedgerTransaction


class CreateData:
    @staticmethod
    async def create_table(engine: AsyncEngine) -> None:
        """Create table if not exists"""
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    @staticmethod
    async def add_game(request: CreateGameRequest, session: AsyncSession) -> Game:
        """Insert a new open game holding the commitment

        Args:
            request (CreateGameRequest): Game settings and commitment
        """
        game = Game(
            game_id=request.game_id,
            game_kind=request.game_kind.value,
            state=GameState.open.value,
            secret=request.secret,
            secret_commitment=request.secret_commitment,
            total_stake=0,
            entry_count=0,
            max_entries=request.max_entries,
            stake_amount=request.stake_amount,
            ticket_price=request.ticket_price,
            house_fee_percent=request.house_fee_percent,
            cancel_requested=False,
            payout_failures=0,
            created_at=datetime.now(),
            expires_at=request.expires_at,
        )
        session.add(game)
        await session.flush()
        return game

    @staticmethod
    async def add_entry(request: AddEntryRequest, position: int, session: AsyncSession) -> GameEntry:
        """Insert an entry at the position reserved by UpdateData.reserve_entry_slot"""
        entry = GameEntry(
            entry_id=request.entry_id,
            game_id=request.game_id,
            position=position,
            participant_id=request.participant_id,
            amount=request.amount,
            choice=request.choice.value if request.choice is not None else None,
            tickets=request.tickets,
            seed=request.seed,
            created_at=datetime.now(),
        )
        session.add(entry)
        await session.flush()
        return entry

    @staticmethod
    async def add_ledger_transaction(
        idempotency_key: str,
        participant_id: str,
        amount: int,
        kind: str,
        description: str | None,
        session: AsyncSession,
    ) -> LedgerTransaction:
        transaction = LedgerTransaction(
            idempotency_key=idempotency_key,
            participant_id=participant_id,
            amount=amount,
            kind=kind,
            description=description,
            created_at=datetime.now(),
        )
        session.add(transaction)
        await session.flush()
        return transaction


class ReadData:
    @staticmethod
    async def read_game(game_id: UUID, session: AsyncSession) -> Game | None:
        """Read game data with its entries in canonical order

        Args:
            game_id (UUID): To identify the game

        Returns:
            Game | None: The game row or None if it does not exist
        """
        stmt = (
            select(Game)
            .where(Game.game_id == game_id)
            .options(selectinload(Game.entries))
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        return result.scalars().first()

    @staticmethod
    async def read_entry(entry_id: UUID, session: AsyncSession) -> GameEntry | None:
        stmt = select(GameEntry).where(GameEntry.entry_id == entry_id)
        result = await session.execute(stmt)
        return result.scalars().first()

    @staticmethod
    async def read_games_by_state(
        states: Sequence[GameState],
        session: AsyncSession,
        game_kind: GameKind | None = None,
        limit: int | None = None,
    ) -> List[Game]:
        """Read games in any of the given states, oldest first"""
        stmt = (
            select(Game)
            .where(Game.state.in_([state.value for state in states]))
            .options(selectinload(Game.entries))
            .order_by(Game.created_at)
        )
        if game_kind is not None:
            stmt = stmt.where(Game.game_kind == game_kind.value)
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def read_recent_settled(limit: int, session: AsyncSession) -> List[Game]:
        stmt = (
            select(Game)
            .where(Game.state == GameState.settled.value)
            .options(selectinload(Game.entries))
            .order_by(desc(Game.settled_at))
            .limit(limit)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def read_account(participant_id: str, session: AsyncSession) -> LedgerAccount | None:
        stmt = select(LedgerAccount).where(LedgerAccount.participant_id == participant_id)
        result = await session.execute(stmt)
        return result.scalars().first()

    @staticmethod
    async def read_transaction(idempotency_key: str, session: AsyncSession) -> LedgerTransaction | None:
        stmt = select(LedgerTransaction).where(LedgerTransaction.idempotency_key == idempotency_key)
        result = await session.execute(stmt)
        return result.scalars().first()

    @staticmethod
    async def read_transactions(participant_id: str, session: AsyncSession, limit: int = 50) -> List[LedgerTransaction]:
        stmt = (
            select(LedgerTransaction)
            .where(LedgerTransaction.participant_id == participant_id)
            .order_by(desc(LedgerTransaction.created_at))
            .limit(limit)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())


class UpdateData:
    @staticmethod
    async def reserve_entry_slot(game_id: UUID, amount: int, session: AsyncSession) -> int | None:
        """Grow total stake and entry count while the game is still open

        Args:
            game_id (UUID): To identify the game
            amount (int): Stake of the new entry

        Returns:
            int | None: Position for the new entry, None if the game no longer accepts entries
        """
        stmt = (
            update(Game)
            .where(
                Game.game_id == game_id,
                Game.state == GameState.open.value,
                Game.cancel_requested.is_(False),
                (Game.max_entries.is_(None)) | (Game.entry_count < Game.max_entries),
            )
            .values(
                total_stake=Game.total_stake + amount,
                entry_count=Game.entry_count + 1,
            )
            .returning(Game.entry_count)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        row = result.first()
        if row is None:
            return None
        return row[0] - 1

    @staticmethod
    async def transition_state(
        game_id: UUID,
        expected_state: GameState,
        new_state: GameState,
        session: AsyncSession,
        **values,
    ) -> bool:
        """Compare-and-swap the game state

        Returns:
            bool: True if this call performed the transition
        """
        conditions = [Game.game_id == game_id, Game.state == expected_state.value]
        if new_state == GameState.resolved:
            conditions.append(Game.cancel_requested.is_(False))
        if new_state == GameState.cancelled:
            conditions.append(Game.cancel_requested.is_(True))
        stmt = (
            update(Game)
            .where(*conditions)
            .values(state=new_state.value, **values)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    @staticmethod
    async def request_cancel(game_id: UUID, session: AsyncSession) -> bool:
        """Freeze an open or locked game and flag it for refunds"""
        stmt = (
            update(Game)
            .where(
                Game.game_id == game_id,
                Game.state.in_([GameState.open.value, GameState.locked.value]),
            )
            .values(
                state=GameState.locked.value,
                cancel_requested=True,
                locked_at=datetime.now(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    @staticmethod
    async def start_timer(request: StartTimerRequest, session: AsyncSession) -> bool:
        """Start the countdown once, only while the game is open"""
        stmt = (
            update(Game)
            .where(
                Game.game_id == request.game_id,
                Game.state == GameState.open.value,
                Game.timer_start_at.is_(None),
            )
            .values(timer_start_at=request.timer_start_at, timer_end_at=request.timer_end_at)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    @staticmethod
    async def increment_payout_failures(game_id: UUID, session: AsyncSession) -> None:
        stmt = (
            update(Game)
            .where(Game.game_id == game_id)
            .values(payout_failures=Game.payout_failures + 1)
            .execution_options(synchronize_session=False)
        )
        await session.execute(stmt)

    @staticmethod
    async def adjust_balance(participant_id: str, delta: int, session: AsyncSession) -> int | None:
        """Apply delta to the balance unless it would go negative

        Returns:
            int | None: New balance, None if the account is missing or would go negative
        """
        stmt = (
            update(LedgerAccount)
            .where(
                LedgerAccount.participant_id == participant_id,
                LedgerAccount.balance + delta >= 0,
            )
            .values(balance=LedgerAccount.balance + delta, updated_at=datetime.now())
            .returning(LedgerAccount.balance)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        row = result.first()
        return None if row is None else row[0]

    @staticmethod
    async def ensure_account(participant_id: str, session: AsyncSession) -> LedgerAccount:
        account = await ReadData.read_account(participant_id, session)
        if account is None:
            account = LedgerAccount(participant_id=participant_id, balance=0, updated_at=datetime.now())
            session.add(account)
            await session.flush()
        return account
