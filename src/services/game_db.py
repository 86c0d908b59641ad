"""Store RPCs for game settlement.

- The settlement layer never touches DB sessions directly; it calls this module.
- This layer owns session/transaction boundaries.
- Every RPC takes an explicit request and returns an RpcResult instead of raising,
  so callers decide whether an error kind is fatal, benign or retryable.
"""

import logging
from datetime import datetime
from functools import wraps
from typing import List, Sequence
from uuid import UUID

from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError, TimeoutError
from sqlalchemy.ext.asyncio import async_sessionmaker

from src.crud import CreateData, ReadData, UpdateData
from src.domain.errors import ErrorKind
from src.models.dc_models import GameKind, GameState
from src.models.schema_models import (
    AddEntryRequest,
    CreateGameRequest,
    EntrySchema,
    GameSchema,
    RecordOutcomeRequest,
    RpcResult,
    StartTimerRequest,
    TransitionRequest,
)

TRANSIENT_DB_ERRORS = (OperationalError, InterfaceError, TimeoutError)


def store_rpc(func):
    """Turn connectivity failures into a retryable store_unavailable result."""

    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except TRANSIENT_DB_ERRORS as e:
            logging.warning(f"Store RPC {func.__name__} failed: {e}")
            return RpcResult.failure(ErrorKind.store_unavailable, f"{func.__name__} unavailable")
        except IntegrityError as e:
            logging.error(f"Store RPC {func.__name__} rejected by constraint: {e}")
            return RpcResult.failure(ErrorKind.invalid_input, "constraint violation")

    return wrapper


class GameStore:
    """Row-atomic game RPCs backed by an async SQLAlchemy session factory."""

    def __init__(self, Session: async_sessionmaker):
        self.Session: async_sessionmaker = Session

    @store_rpc
    async def create_game(self, request: CreateGameRequest) -> RpcResult[GameSchema]:
        async with self.Session() as session:
            async with session.begin():
                await CreateData.add_game(request, session)
            game = await ReadData.read_game(request.game_id, session)
            return RpcResult[GameSchema].success(GameSchema.model_validate(game))

    @store_rpc
    async def add_entry(self, request: AddEntryRequest) -> RpcResult[EntrySchema]:
        async with self.Session() as session:
            async with session.begin():
                # A retried request whose first attempt committed gets the stored entry back.
                existing = await ReadData.read_entry(request.entry_id, session)
                if existing is not None:
                    logging.info(f"Entry {request.entry_id} already stored, replaying")
                    return RpcResult[EntrySchema].success(EntrySchema.model_validate(existing))
                position = await UpdateData.reserve_entry_slot(request.game_id, request.amount, session)
                if position is None:
                    game = await ReadData.read_game(request.game_id, session)
                    if game is None:
                        return RpcResult[EntrySchema].failure(ErrorKind.game_not_found)
                    return RpcResult[EntrySchema].failure(
                        ErrorKind.game_not_open, f"game is {game.state}"
                    )
                entry = await CreateData.add_entry(request, position, session)
                return RpcResult[EntrySchema].success(EntrySchema.model_validate(entry))

    @store_rpc
    async def get_entry(self, entry_id: UUID) -> RpcResult[EntrySchema]:
        async with self.Session() as session:
            entry = await ReadData.read_entry(entry_id, session)
            if entry is None:
                return RpcResult[EntrySchema].success(None)
            return RpcResult[EntrySchema].success(EntrySchema.model_validate(entry))

    async def _transition(
        self,
        game_id: UUID,
        expected_state: GameState,
        new_state: GameState,
        **values,
    ) -> RpcResult[GameSchema]:
        async with self.Session() as session:
            async with session.begin():
                swapped = await UpdateData.transition_state(
                    game_id, expected_state, new_state, session, **values
                )
            game = await ReadData.read_game(game_id, session)
            if game is None:
                return RpcResult[GameSchema].failure(ErrorKind.game_not_found)
            if not swapped:
                return RpcResult[GameSchema].failure(
                    ErrorKind.concurrent_transition_conflict,
                    f"expected {expected_state.value}, found {game.state}",
                )
            logging.info(f"Game {game_id}: {expected_state.value} -> {new_state.value}")
            return RpcResult[GameSchema].success(GameSchema.model_validate(game))

    @store_rpc
    async def lock_game(self, request: TransitionRequest) -> RpcResult[GameSchema]:
        return await self._transition(
            request.game_id, request.expected_state, GameState.locked, locked_at=datetime.now()
        )

    @store_rpc
    async def record_outcome(self, request: RecordOutcomeRequest) -> RpcResult[GameSchema]:
        return await self._transition(
            request.game_id,
            GameState.locked,
            GameState.resolved,
            client_seed=request.client_seed,
            derivation_hash=request.derivation_hash,
            roll=request.roll,
            outcome=request.outcome,
            winner_id=request.winner_id,
            resolved_at=datetime.now(),
        )

    @store_rpc
    async def mark_settled(self, game_id: UUID) -> RpcResult[GameSchema]:
        return await self._transition(
            game_id, GameState.resolved, GameState.settled, settled_at=datetime.now()
        )

    @store_rpc
    async def mark_cancelled(self, game_id: UUID) -> RpcResult[GameSchema]:
        return await self._transition(
            game_id, GameState.locked, GameState.cancelled, cancelled_at=datetime.now()
        )

    @store_rpc
    async def request_cancel(self, game_id: UUID) -> RpcResult[GameSchema]:
        async with self.Session() as session:
            async with session.begin():
                frozen = await UpdateData.request_cancel(game_id, session)
            game = await ReadData.read_game(game_id, session)
            if game is None:
                return RpcResult[GameSchema].failure(ErrorKind.game_not_found)
            if not frozen:
                return RpcResult[GameSchema].failure(
                    ErrorKind.invalid_transition, f"cannot cancel a {game.state} game"
                )
            return RpcResult[GameSchema].success(GameSchema.model_validate(game))

    @store_rpc
    async def start_timer(self, request: StartTimerRequest) -> RpcResult[GameSchema]:
        async with self.Session() as session:
            async with session.begin():
                started = await UpdateData.start_timer(request, session)
            game = await ReadData.read_game(request.game_id, session)
            if game is None:
                return RpcResult[GameSchema].failure(ErrorKind.game_not_found)
            if not started:
                return RpcResult[GameSchema].failure(
                    ErrorKind.concurrent_transition_conflict, "timer already started or game not open"
                )
            return RpcResult[GameSchema].success(GameSchema.model_validate(game))

    @store_rpc
    async def record_payout_failure(self, game_id: UUID) -> RpcResult[GameSchema]:
        async with self.Session() as session:
            async with session.begin():
                await UpdateData.increment_payout_failures(game_id, session)
            game = await ReadData.read_game(game_id, session)
            if game is None:
                return RpcResult[GameSchema].failure(ErrorKind.game_not_found)
            return RpcResult[GameSchema].success(GameSchema.model_validate(game))

    @store_rpc
    async def get_game(self, game_id: UUID) -> RpcResult[GameSchema]:
        async with self.Session() as session:
            game = await ReadData.read_game(game_id, session)
            if game is None:
                return RpcResult[GameSchema].failure(ErrorKind.game_not_found, f"game {game_id} not found")
            return RpcResult[GameSchema].success(GameSchema.model_validate(game))

    @store_rpc
    async def list_games(
        self,
        states: Sequence[GameState],
        game_kind: GameKind | None = None,
        limit: int | None = None,
    ) -> RpcResult[List[GameSchema]]:
        async with self.Session() as session:
            games = await ReadData.read_games_by_state(states, session, game_kind, limit)
            return RpcResult[List[GameSchema]].success(
                [GameSchema.model_validate(game) for game in games]
            )

    @store_rpc
    async def recent_games(self, limit: int = 20) -> RpcResult[List[GameSchema]]:
        async with self.Session() as session:
            games = await ReadData.read_recent_settled(limit, session)
            return RpcResult[List[GameSchema]].success(
                [GameSchema.model_validate(game) for game in games]
            )
