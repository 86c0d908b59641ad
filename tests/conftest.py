import asyncio
from datetime import datetime
from uuid import UUID

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool
from uuid6 import uuid7

from src.crud import CreateData
from src.db import build_session_factory, sqlite_url_for
from src.domain.errors import ErrorKind, LedgerUnavailable
from src.error_log import ErrorLog
from src.models.dc_models import CoinSide, GameSettings
from src.models.schema_models import EntrySchema, RpcResult
from src.services.coordinator import GameCoordinator
from src.services.game_db import GameStore
from src.services.ledger import SqlLedger
from src.services.settlement import SettlementMachine


class RecordingPublisher:
    """Keeps published events in memory instead of sending them to Redis."""

    def __init__(self):
        self.events = []

    async def publish(self, game_id: UUID, event: str, payload: dict | None = None) -> bool:
        self.events.append((game_id, event, payload or {}))
        return True

    def names(self, game_id: UUID) -> list:
        return [event for gid, event, _ in self.events if gid == game_id]


class FlakyLedger:
    """Fails the next `fail_credits` credits with LedgerUnavailable, then delegates."""

    def __init__(self, ledger: SqlLedger, fail_credits: int = 0):
        self.ledger = ledger
        self.fail_credits = fail_credits
        self.credit_attempts = 0

    async def credit(self, participant_id, amount, idempotency_key, description=None):
        self.credit_attempts += 1
        if self.fail_credits > 0:
            self.fail_credits -= 1
            raise LedgerUnavailable("ledger down")
        return await self.ledger.credit(participant_id, amount, idempotency_key, description)

    async def debit(self, participant_id, amount, idempotency_key, description=None):
        return await self.ledger.debit(participant_id, amount, idempotency_key, description)

    async def balance(self, participant_id):
        return await self.ledger.balance(participant_id)

    async def transactions(self, participant_id, limit=50):
        return await self.ledger.transactions(participant_id, limit)


class LostAckStore:
    """Commits add_entry on the real store, then reports store_unavailable `lost_acks` times."""

    def __init__(self, store: GameStore, lost_acks: int = 1):
        self.store = store
        self.lost_acks = lost_acks

    async def add_entry(self, request):
        result = await self.store.add_entry(request)
        if self.lost_acks > 0:
            self.lost_acks -= 1
            return RpcResult.failure(ErrorKind.store_unavailable, "connection dropped")
        return result

    def __getattr__(self, name):
        return getattr(self.store, name)


class Harness:
    def __init__(self, db_path, settings: GameSettings):
        self.settings = settings
        self.engine = create_async_engine(sqlite_url_for(str(db_path)), poolclass=NullPool)
        self.Session = build_session_factory(self.engine)
        self.store = GameStore(self.Session)
        self.ledger = SqlLedger(self.Session)
        self.publisher = RecordingPublisher()
        self.error_log = ErrorLog(settings.error_log_size)
        self.machine = self.build_machine(self.ledger)
        self.coordinator = GameCoordinator(self.machine, settings, self.error_log)

    def build_machine(self, ledger) -> SettlementMachine:
        return SettlementMachine(self.store, ledger, self.publisher, self.settings, self.error_log)

    async def setup(self):
        await CreateData.create_table(self.engine)

    async def fund(self, participant_id: str, amount: int):
        await self.ledger.credit(participant_id, amount, f"fund:{participant_id}:{uuid7()}", "test funds")


@pytest.fixture
def settings() -> GameSettings:
    return GameSettings(retry_delay_seconds=0, payout_max_retries=3, jackpot_ticket_price=10)


@pytest.fixture
def harness(tmp_path, settings) -> Harness:
    h = Harness(tmp_path / "games.sqlite3", settings)
    asyncio.run(h.setup())
    yield h
    asyncio.run(h.engine.dispose())


def make_entry(
    participant_id: str,
    position: int,
    amount: int = 10,
    choice: CoinSide | None = None,
    seed: str | None = None,
    game_id: UUID | None = None,
) -> EntrySchema:
    return EntrySchema(
        entry_id=uuid7(),
        game_id=game_id or uuid7(),
        position=position,
        participant_id=participant_id,
        amount=amount,
        choice=choice,
        seed=seed,
        created_at=datetime(2024, 1, 1),
    )
