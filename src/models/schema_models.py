from pydantic import BaseModel, Field
from typing import Generic, List, Optional, TypeVar
from uuid import UUID
from datetime import datetime

from src.domain.errors import ErrorKind, error_for
from src.models.dc_models import CoinSide, GameKind, GameState

T = TypeVar("T")


class EntrySchema(BaseModel):
    entry_id: UUID
    game_id: UUID
    position: int
    participant_id: str
    amount: int
    choice: CoinSide | None = None
    tickets: int | None = None
    seed: str | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class GameSchema(BaseModel):
    game_id: UUID
    game_kind: GameKind
    state: GameState
    secret: str
    secret_commitment: str
    client_seed: str | None = None
    derivation_hash: str | None = None
    roll: int | None = None
    outcome: str | None = None
    winner_id: str | None = None
    total_stake: int
    entry_count: int
    max_entries: int | None = None
    stake_amount: int | None = None
    ticket_price: int | None = None
    house_fee_percent: int = 0
    cancel_requested: bool = False
    payout_failures: int = 0
    created_at: datetime
    expires_at: datetime | None = None
    timer_start_at: datetime | None = None
    timer_end_at: datetime | None = None
    locked_at: datetime | None = None
    resolved_at: datetime | None = None
    settled_at: datetime | None = None
    cancelled_at: datetime | None = None
    entries: List[EntrySchema] = []

    class Config:
        from_attributes = True


class LedgerTransactionSchema(BaseModel):
    transaction_id: UUID
    idempotency_key: str
    participant_id: str
    amount: int
    kind: str
    description: str | None = None
    created_at: datetime

    class Config:
        from_attributes = True


# ---- store RPC requests -----------------------------------------------------


class CreateGameRequest(BaseModel):
    game_id: UUID
    game_kind: GameKind
    secret: str = Field(min_length=1)
    secret_commitment: str = Field(min_length=64, max_length=64)
    max_entries: int | None = None
    stake_amount: int | None = None
    ticket_price: int | None = None
    house_fee_percent: int = 0
    expires_at: datetime | None = None


class AddEntryRequest(BaseModel):
    entry_id: UUID
    game_id: UUID
    participant_id: str = Field(min_length=1)
    amount: int = Field(gt=0)
    choice: CoinSide | None = None
    tickets: int | None = None
    seed: str | None = None


class TransitionRequest(BaseModel):
    game_id: UUID
    expected_state: GameState


class RecordOutcomeRequest(BaseModel):
    game_id: UUID
    client_seed: str = Field(min_length=1)
    derivation_hash: str
    roll: int
    outcome: str
    winner_id: str


class StartTimerRequest(BaseModel):
    game_id: UUID
    timer_start_at: datetime
    timer_end_at: datetime


class RpcResult(BaseModel, Generic[T]):
    """Typed result of a store RPC: either a value or an error kind."""
    ok: bool
    value: Optional[T] = None
    error: ErrorKind | None = None
    detail: str | None = None

    @classmethod
    def success(cls, value: T) -> "RpcResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: ErrorKind, detail: str = "") -> "RpcResult[T]":
        return cls(ok=False, error=error, detail=detail or error.value)

    def unwrap(self) -> T:
        """Return the value or raise the GameError matching the error kind."""
        if self.ok:
            return self.value
        raise error_for(self.error, self.detail or "")
