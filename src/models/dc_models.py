from pydantic import BaseModel, Field
from enum import Enum
from uuid import UUID
from datetime import datetime
from typing import Optional, List


class GameKind(str, Enum):
    binary = "binary"  # coinflip, 50/50 between two players
    weighted = "weighted"  # jackpot, win chance proportional to stake


class GameState(str, Enum):
    open = "open"
    locked = "locked"
    resolved = "resolved"
    settled = "settled"
    cancelled = "cancelled"


class CoinSide(str, Enum):
    heads = "heads"
    tails = "tails"

    def opposite(self) -> "CoinSide":
        return CoinSide.tails if self == CoinSide.heads else CoinSide.heads


class VerificationFailure(str, Enum):
    commitment_mismatch = "commitment_mismatch"
    outcome_mismatch = "outcome_mismatch"
    invalid_input = "invalid_input"


class GameSettings(BaseModel):
    """Tunable limits and timers for the settlement state machine."""
    house_fee_percent: int = Field(default=0, ge=0, le=100)
    coinflip_open_seconds: int = 600
    jackpot_open_seconds: int = 3600
    jackpot_countdown_seconds: int = 45
    jackpot_min_players: int = 2
    jackpot_max_entries: int = 100
    jackpot_ticket_price: int = 1
    max_stake: int = 100000
    payout_max_retries: int = 3
    retry_delay_seconds: float = 1.0
    coordinator_interval_seconds: float = 1.0
    rate_limit_max_attempts: int = 10
    rate_limit_window_seconds: float = 60.0
    error_log_size: int = 50


class CoinflipCreateModel(BaseModel):
    amount: int = Field(gt=0)
    choice: CoinSide
    seed: Optional[str] = Field(default=None, max_length=128)


class CoinflipJoinModel(BaseModel):
    seed: Optional[str] = Field(default=None, max_length=128)


class TicketPurchaseModel(BaseModel):
    tickets: int = Field(gt=0)
    seed: Optional[str] = Field(default=None, max_length=128)


class EntryModel(BaseModel):
    participant_id: str
    amount: int
    choice: CoinSide | None = None
    tickets: int | None = None
    position: int

    class Config:
        from_attributes = True


class ParticipantWeightModel(BaseModel):
    participant_id: str = Field(min_length=1)
    amount: int = Field(gt=0)


class ParticipantShareModel(BaseModel):
    participant_id: str
    amount: int
    win_chance: float


class GameModel(BaseModel):
    """Public view of a game. Secret material only appears once the game is settled."""
    game_id: UUID
    game_kind: GameKind
    state: GameState
    secret_commitment: str
    total_stake: int
    entries: List[EntryModel]
    participants: List[ParticipantShareModel]
    stake_amount: int | None = None
    ticket_price: int | None = None
    outcome: str | None = None
    winner_id: str | None = None
    payout_pending: bool = False
    timer_end_at: datetime | None = None
    expires_at: datetime | None = None
    created_at: datetime
    settled_at: datetime | None = None


class FairnessModel(BaseModel):
    game_id: UUID
    game_kind: GameKind
    state: GameState
    secret_commitment: str
    secret: str | None = None
    client_seed: str | None = None
    derivation_hash: str | None = None
    roll: int | None = None
    outcome: str | None = None
    participants: List[ParticipantShareModel] = []


class VerificationRequestModel(BaseModel):
    game_id: UUID | None = None
    secret: str
    client_seed: str
    recorded_outcome: str
    recorded_commitment: str
    game_kind: GameKind = GameKind.binary
    participants: List[ParticipantWeightModel] = []


class VerificationResultModel(BaseModel):
    valid: bool
    reason: VerificationFailure | None = None
    derivation_hash: str | None = None
    outcome: str | None = None


class HistoryItemModel(BaseModel):
    game_id: UUID
    game_kind: GameKind
    total_stake: int
    player_count: int
    outcome: str | None
    winner_id: str | None
    settled_at: datetime | None


class BalanceModel(BaseModel):
    participant_id: str
    balance: int


class ErrorLogEntryModel(BaseModel):
    timestamp: datetime
    game: str
    error: str
    context: dict = {}
