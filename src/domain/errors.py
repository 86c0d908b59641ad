"""Error taxonomy shared by the store, ledger and settlement layers."""

from enum import Enum


class ErrorKind(str, Enum):
    game_not_found = "game_not_found"
    game_not_open = "game_not_open"
    invalid_input = "invalid_input"
    invalid_transition = "invalid_transition"
    insufficient_funds = "insufficient_funds"
    payout_failed = "payout_failed"
    concurrent_transition_conflict = "concurrent_transition_conflict"
    store_unavailable = "store_unavailable"
    ledger_unavailable = "ledger_unavailable"
    random_source_unavailable = "random_source_unavailable"


class GameError(Exception):
    kind: ErrorKind = ErrorKind.invalid_input
    retryable: bool = False

    def __init__(self, detail: str = ""):
        super().__init__(detail or self.kind.value)
        self.detail = detail or self.kind.value


class GameNotFound(GameError):
    kind = ErrorKind.game_not_found


class GameNotOpen(GameError):
    kind = ErrorKind.game_not_open


class InvalidInput(GameError):
    kind = ErrorKind.invalid_input


class InvalidTransition(GameError):
    kind = ErrorKind.invalid_transition


class InsufficientFunds(GameError):
    kind = ErrorKind.insufficient_funds


class PayoutFailed(GameError):
    kind = ErrorKind.payout_failed


class ConcurrentTransitionConflict(GameError):
    """Another writer already moved the game out of the expected state."""
    kind = ErrorKind.concurrent_transition_conflict


class StoreUnavailable(GameError):
    kind = ErrorKind.store_unavailable
    retryable = True


class LedgerUnavailable(GameError):
    kind = ErrorKind.ledger_unavailable
    retryable = True


class RandomSourceUnavailable(GameError):
    """The OS random source failed. Fatal for game creation, never retried."""
    kind = ErrorKind.random_source_unavailable


_ERRORS_BY_KIND = {
    cls.kind: cls
    for cls in (
        GameNotFound,
        GameNotOpen,
        InvalidInput,
        InvalidTransition,
        InsufficientFunds,
        PayoutFailed,
        ConcurrentTransitionConflict,
        StoreUnavailable,
        LedgerUnavailable,
        RandomSourceUnavailable,
    )
}


def error_for(kind: ErrorKind, detail: str = "") -> GameError:
    return _ERRORS_BY_KIND[kind](detail)
