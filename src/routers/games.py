import logging
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import StreamingResponse
from redis.asyncio import Redis

from src.converter import DataConverter
from src.dependencies import (
    get_current_user,
    get_error_log,
    get_ledger,
    get_machine,
    get_rate_limiter,
    get_redis,
)
from src.domain.errors import GameError, PayoutFailed
from src.error_log import ErrorLog
from src.models.basic_authentication_models import UserModel
from src.models.dc_models import (
    BalanceModel,
    CoinflipCreateModel,
    CoinflipJoinModel,
    ErrorLogEntryModel,
    GameKind,
    GameModel,
    GameState,
    HistoryItemModel,
    TicketPurchaseModel,
)
from src.rate_limiter import RateLimiter
from src.redis_subscriber import GameEventSubscriber
from src.routers.errors import processing_response, to_http_exception
from src.services.ledger import SqlLedger
from src.services.settlement import SettlementMachine

game_router = APIRouter()
data_converter = DataConverter()


class CoinflipAPI:
    @staticmethod
    @game_router.post("/coinflip", response_model=GameModel, status_code=status.HTTP_201_CREATED)
    async def create_coinflip(
        body: CoinflipCreateModel,
        user_data: UserModel = Depends(get_current_user),
        machine: SettlementMachine = Depends(get_machine),
        rate_limiter: RateLimiter = Depends(get_rate_limiter),
    ) -> GameModel:
        """Open a coinflip offer with the caller's stake and side

        Args:
            body (CoinflipCreateModel): amount, choice and optional seed

        Returns:
            GameModel: The open game with its commitment
        """
        rate_limiter.check(user_data.participant_id)
        try:
            game = await machine.create_coinflip(
                user_data.participant_id, body.amount, body.choice, body.seed
            )
        except GameError as e:
            raise to_http_exception(e) from e
        return data_converter.convert_gameschema_to_gamemodel(game)

    @staticmethod
    @game_router.post("/coinflip/{game_id}/join", response_model=GameModel)
    async def join_coinflip(
        game_id: UUID,
        body: CoinflipJoinModel | None = None,
        user_data: UserModel = Depends(get_current_user),
        machine: SettlementMachine = Depends(get_machine),
        rate_limiter: RateLimiter = Depends(get_rate_limiter),
    ):
        """Join an open coinflip on the opposite side. The game is played out immediately."""
        rate_limiter.check(user_data.participant_id)
        seed = body.seed if body is not None else None
        try:
            game = await machine.join_coinflip(game_id, user_data.participant_id, seed)
        except PayoutFailed:
            return processing_response(game_id)
        except GameError as e:
            raise to_http_exception(e) from e
        return data_converter.convert_gameschema_to_gamemodel(game)

    @staticmethod
    @game_router.get("/coinflip/open", response_model=List[GameModel])
    async def open_coinflips(machine: SettlementMachine = Depends(get_machine)) -> List[GameModel]:
        try:
            games = await machine.list_games([GameState.open], GameKind.binary)
        except GameError as e:
            raise to_http_exception(e) from e
        return [data_converter.convert_gameschema_to_gamemodel(game) for game in games]


class JackpotAPI:
    @staticmethod
    @game_router.post("/jackpot/{game_id}/tickets", response_model=GameModel)
    async def buy_tickets(
        game_id: UUID,
        body: TicketPurchaseModel,
        user_data: UserModel = Depends(get_current_user),
        machine: SettlementMachine = Depends(get_machine),
        rate_limiter: RateLimiter = Depends(get_rate_limiter),
    ):
        rate_limiter.check(user_data.participant_id)
        try:
            game = await machine.buy_tickets(game_id, user_data.participant_id, body.tickets, body.seed)
        except PayoutFailed:
            return processing_response(game_id)
        except GameError as e:
            raise to_http_exception(e) from e
        return data_converter.convert_gameschema_to_gamemodel(game)

    @staticmethod
    @game_router.get("/jackpot/current", response_model=GameModel)
    async def current_jackpot(machine: SettlementMachine = Depends(get_machine)) -> GameModel:
        try:
            game = await machine.current_jackpot()
        except GameError as e:
            raise to_http_exception(e) from e
        if game is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail="No jackpot is open right now."
            )
        return data_converter.convert_gameschema_to_gamemodel(game)


class GameAPI:
    @staticmethod
    @game_router.get("/games/{game_id}", response_model=GameModel)
    async def get_game(game_id: UUID, machine: SettlementMachine = Depends(get_machine)) -> GameModel:
        try:
            game = await machine.get_game(game_id)
        except GameError as e:
            raise to_http_exception(e) from e
        return data_converter.convert_gameschema_to_gamemodel(game)

    @staticmethod
    @game_router.get("/games/{game_id}/stream")
    async def stream_game(
        game_id: UUID,
        machine: SettlementMachine = Depends(get_machine),
        redis: Redis = Depends(get_redis),
    ):
        try:
            await machine.get_game(game_id)
        except GameError as e:
            raise to_http_exception(e) from e
        subscriber = GameEventSubscriber(machine, game_id)
        return StreamingResponse(
            subscriber.event_generator(redis),
            media_type="text/event-stream; charset=utf-8",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    @staticmethod
    @game_router.post("/games/{game_id}/cancel", response_model=GameModel)
    async def cancel_game(
        game_id: UUID,
        user_data: UserModel = Depends(get_current_user),
        machine: SettlementMachine = Depends(get_machine),
    ):
        """Withdraw an open coinflip offer. Only its creator may do this."""
        try:
            game = await machine.get_game(game_id)
            if (
                game.game_kind != GameKind.binary
                or not game.entries
                or game.entries[0].participant_id != user_data.participant_id
            ):
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail="Only the creator can cancel this game.",
                )
            if game.state != GameState.open:
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail=f"Game is {game.state.value}.",
                )
            game = await machine.cancel(game_id)
        except PayoutFailed:
            return processing_response(game_id)
        except GameError as e:
            raise to_http_exception(e) from e
        logging.info(f"Game {game_id} cancelled by {user_data.participant_id}")
        return data_converter.convert_gameschema_to_gamemodel(game)


class AccountAPI:
    @staticmethod
    @game_router.get("/history", response_model=List[HistoryItemModel])
    async def history(
        limit: int = Query(default=20, ge=1, le=100),
        machine: SettlementMachine = Depends(get_machine),
    ) -> List[HistoryItemModel]:
        try:
            games = await machine.recent_games(limit)
        except GameError as e:
            raise to_http_exception(e) from e
        return [data_converter.convert_gameschema_to_historyitem(game) for game in games]

    @staticmethod
    @game_router.get("/balance", response_model=BalanceModel)
    async def balance(
        user_data: UserModel = Depends(get_current_user),
        ledger: SqlLedger = Depends(get_ledger),
    ) -> BalanceModel:
        try:
            amount = await ledger.balance(user_data.participant_id)
        except GameError as e:
            raise to_http_exception(e) from e
        return BalanceModel(participant_id=user_data.participant_id, balance=amount)

    @staticmethod
    @game_router.get("/ops/errors", response_model=List[ErrorLogEntryModel])
    async def recent_errors(
        game: str | None = None,
        user_data: UserModel = Depends(get_current_user),
        error_log: ErrorLog = Depends(get_error_log),
    ) -> List[ErrorLogEntryModel]:
        return error_log.get_errors(game)
