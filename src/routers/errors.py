from uuid import UUID

from fastapi import HTTPException, status
from fastapi.responses import JSONResponse

from src.domain.errors import ErrorKind, GameError

STATUS_BY_KIND = {
    ErrorKind.game_not_found: status.HTTP_404_NOT_FOUND,
    ErrorKind.game_not_open: status.HTTP_409_CONFLICT,
    ErrorKind.invalid_input: status.HTTP_400_BAD_REQUEST,
    ErrorKind.invalid_transition: status.HTTP_409_CONFLICT,
    ErrorKind.insufficient_funds: status.HTTP_402_PAYMENT_REQUIRED,
    ErrorKind.concurrent_transition_conflict: status.HTTP_409_CONFLICT,
    ErrorKind.store_unavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.ledger_unavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.random_source_unavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def to_http_exception(error: GameError) -> HTTPException:
    """Map a GameError to the HTTP status the client sees"""
    return HTTPException(
        status_code=STATUS_BY_KIND.get(error.kind, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail={"error": error.kind.value, "detail": error.detail},
    )


def processing_response(game_id: UUID) -> JSONResponse:
    """The game is resolved but its payout is still being retried"""
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content={"status": "processing", "game_id": str(game_id)},
    )
