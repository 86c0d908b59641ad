"""Settlement state machine for coinflip and jackpot games.

    open --lock--> locked --resolve--> resolved --settle--> settled
    open/locked --cancel (refund every participant)--> cancelled

The commitment is generated before the game row exists, so no entry (and no
player seed) can be accepted before the secret is fixed. Every transition is a
compare-and-swap in the store; a caller that loses the race re-reads the game
and returns what the winner recorded instead of deriving a second outcome.
"""

import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Sequence, TypeVar
from uuid import UUID

from uuid6 import uuid7

from src.domain.errors import (
    ConcurrentTransitionConflict,
    GameError,
    GameNotOpen,
    InvalidInput,
    InvalidTransition,
    PayoutFailed,
)
from src.domain.fairness import derive_outcome, generate_commitment
from src.domain.game_rules import (
    binary_winner,
    build_client_seed,
    payout_amount,
    refunds_by_participant,
    unique_players,
    validate_stake,
    weighted_participants,
)
from src.error_log import ErrorLog
from src.models.dc_models import CoinSide, GameKind, GameSettings, GameState
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
from src.services.game_db import GameStore
from src.services.ledger import SqlLedger, payout_key, refund_key, rejected_entry_key, stake_key
from src.services.publisher import EventPublisher
from src.services.retry import retry_operation

T = TypeVar("T")


def game_label(game: GameSchema) -> str:
    return "coinflip" if game.game_kind == GameKind.binary else "jackpot"


class SettlementMachine:
    def __init__(
        self,
        store: GameStore,
        ledger: SqlLedger,
        publisher: EventPublisher,
        settings: GameSettings,
        error_log: ErrorLog,
    ):
        self.store = store
        self.ledger = ledger
        self.publisher = publisher
        self.settings = settings
        self.error_log = error_log

    # ---- helpers ------------------------------------------------------------

    async def _rpc(self, description: str, call: Callable[[], Awaitable[RpcResult[T]]]) -> T:
        """Run a store RPC, retrying while the store is unavailable, and unwrap it."""

        async def attempt() -> T:
            result = await call()
            return result.unwrap()

        return await retry_operation(
            attempt,
            max_retries=self.settings.payout_max_retries,
            delay=self.settings.retry_delay_seconds,
            description=description,
        )

    async def _ledger_call(self, description: str, call: Callable[[], Awaitable[T]]) -> T:
        return await retry_operation(
            call,
            max_retries=self.settings.payout_max_retries,
            delay=self.settings.retry_delay_seconds,
            description=description,
        )

    async def get_game(self, game_id: UUID) -> GameSchema:
        return await self._rpc("getGame", lambda: self.store.get_game(game_id))

    async def list_games(self, states: Sequence[GameState], game_kind: GameKind | None = None) -> List[GameSchema]:
        return await self._rpc("listGames", lambda: self.store.list_games(states, game_kind))

    async def recent_games(self, limit: int = 20) -> List[GameSchema]:
        return await self._rpc("recentGames", lambda: self.store.recent_games(limit))

    async def current_jackpot(self) -> GameSchema | None:
        games = await self.list_games([GameState.open], GameKind.weighted)
        return games[0] if games else None

    # ---- creation -----------------------------------------------------------

    async def _create_game(self, request: CreateGameRequest) -> GameSchema:
        game = await self._rpc("createGame", lambda: self.store.create_game(request))
        logging.info(f"Created {request.game_kind.value} game {game.game_id}")
        return game

    async def create_coinflip(
        self, participant_id: str, amount: int, choice: CoinSide, seed: str | None = None
    ) -> GameSchema:
        """Open a coinflip with the maker's stake and side

        Raises:
            InvalidInput: bad stake or side
            InsufficientFunds: the maker cannot cover the stake
            RandomSourceUnavailable: no secret could be generated, nothing is created
        """
        validate_stake(amount, self.settings.max_stake)
        try:
            choice = CoinSide(choice)
        except ValueError as e:
            raise InvalidInput(f"unknown side {choice}") from e

        commitment = generate_commitment()
        request = CreateGameRequest(
            game_id=uuid7(),
            game_kind=GameKind.binary,
            secret=commitment.secret,
            secret_commitment=commitment.secret_commitment,
            max_entries=2,
            stake_amount=amount,
            house_fee_percent=self.settings.house_fee_percent,
            expires_at=datetime.now() + timedelta(seconds=self.settings.coinflip_open_seconds),
        )
        game = await self._create_game(request)
        try:
            await self.add_entry(game.game_id, participant_id, amount, choice=choice, seed=seed)
        except GameError:
            # The maker's stake never landed; take the empty offer down.
            await self.cancel(game.game_id)
            raise
        game = await self.get_game(game.game_id)
        await self.publisher.publish(
            game.game_id,
            "created",
            {"game_kind": game.game_kind.value, "secret_commitment": game.secret_commitment,
             "stake_amount": amount, "maker_choice": choice.value},
        )
        return game

    async def create_jackpot(self, ticket_price: int | None = None) -> GameSchema:
        ticket_price = ticket_price or self.settings.jackpot_ticket_price
        validate_stake(ticket_price, self.settings.max_stake)
        commitment = generate_commitment()
        request = CreateGameRequest(
            game_id=uuid7(),
            game_kind=GameKind.weighted,
            secret=commitment.secret,
            secret_commitment=commitment.secret_commitment,
            max_entries=self.settings.jackpot_max_entries,
            ticket_price=ticket_price,
            house_fee_percent=self.settings.house_fee_percent,
            expires_at=datetime.now() + timedelta(seconds=self.settings.jackpot_open_seconds),
        )
        game = await self._create_game(request)
        await self.publisher.publish(
            game.game_id,
            "created",
            {"game_kind": game.game_kind.value, "secret_commitment": game.secret_commitment,
             "ticket_price": ticket_price},
        )
        return game

    # ---- entries ------------------------------------------------------------

    async def add_entry(
        self,
        game_id: UUID,
        participant_id: str,
        amount: int,
        choice: CoinSide | None = None,
        tickets: int | None = None,
        seed: str | None = None,
    ) -> EntrySchema:
        """Collect the stake and append an entry while the game is open

        Raises:
            GameNotOpen: the game was locked, resolved or cancelled
            InsufficientFunds: the participant cannot cover the stake
        """
        if not participant_id:
            raise InvalidInput("participant id must not be empty")
        validate_stake(amount, self.settings.max_stake)
        game = await self.get_game(game_id)
        if game.state != GameState.open or game.cancel_requested:
            raise GameNotOpen(f"game {game_id} is {game.state.value}")

        entry_id = uuid7()
        await self._ledger_call(
            "debit stake",
            lambda: self.ledger.debit(participant_id, amount, stake_key(game_id, entry_id), "stake"),
        )
        request = AddEntryRequest(
            entry_id=entry_id,
            game_id=game_id,
            participant_id=participant_id,
            amount=amount,
            choice=choice,
            tickets=tickets,
            seed=seed or None,
        )
        try:
            entry = await self._rpc("addEntry", lambda: self.store.add_entry(request))
        except GameError as e:
            entry = await self._stored_entry_or_refund(request, e)
        logging.info(f"Game {game_id}: entry {entry.position} by {participant_id} for {amount}")
        await self.publisher.publish(
            game_id,
            "entry_added",
            {"participant_id": participant_id, "amount": amount, "position": entry.position,
             "choice": choice.value if choice else None, "tickets": tickets},
        )
        return entry

    async def _stored_entry_or_refund(self, request: AddEntryRequest, error: GameError) -> EntrySchema:
        """Settle a failed addEntry against what the store actually holds

        An attempt can commit and still report a failure. The stake is only
        returned once the store confirms the entry is not in the pool.
        """
        try:
            stored = await self._rpc("getEntry", lambda: self.store.get_entry(request.entry_id))
        except GameError as e:
            self.error_log.log_error(
                "Entry state unknown",
                "system",
                {"game_id": str(request.game_id), "entry_id": str(request.entry_id),
                 "participant_id": request.participant_id, "kind": e.kind.value},
            )
            raise error from e
        if stored is not None:
            logging.info(f"Entry {request.entry_id} was stored despite {error.kind.value}")
            return stored

        await self._ledger_call(
            "refund rejected entry",
            lambda: self.ledger.credit(
                request.participant_id,
                request.amount,
                rejected_entry_key(request.game_id, request.entry_id),
                "entry rejected",
            ),
        )
        raise error

    async def join_coinflip(self, game_id: UUID, participant_id: str, seed: str | None = None) -> GameSchema:
        """Take the opposite side of an open coinflip and play it out

        Raises:
            PayoutFailed: the game resolved but the payout is still pending
        """
        game = await self.get_game(game_id)
        if game.game_kind != GameKind.binary:
            raise InvalidInput("not a coinflip game")
        if game.state != GameState.open or game.cancel_requested:
            raise GameNotOpen(f"game {game_id} is {game.state.value}")
        if not game.entries:
            raise GameNotOpen(f"game {game_id} has no maker")
        maker = game.entries[0]
        if maker.participant_id == participant_id:
            raise InvalidInput("cannot join your own game")

        await self.add_entry(
            game_id, participant_id, game.stake_amount, choice=maker.choice.opposite(), seed=seed
        )
        # Second participant joined: the binary trigger condition.
        return await self.complete(game_id)

    async def buy_tickets(
        self, game_id: UUID, participant_id: str, tickets: int, seed: str | None = None
    ) -> GameSchema:
        if isinstance(tickets, bool) or not isinstance(tickets, int) or tickets <= 0:
            raise InvalidInput("tickets must be a positive integer")
        game = await self.get_game(game_id)
        if game.game_kind != GameKind.weighted:
            raise InvalidInput("not a jackpot game")
        if game.state != GameState.open or game.cancel_requested:
            raise GameNotOpen(f"game {game_id} is {game.state.value}")

        await self.add_entry(
            game_id, participant_id, tickets * game.ticket_price, tickets=tickets, seed=seed
        )
        game = await self.get_game(game_id)
        enough_players = unique_players(game.entries) >= self.settings.jackpot_min_players
        if enough_players and game.max_entries is not None and game.entry_count >= game.max_entries:
            logging.info(f"Game {game_id}: entry threshold reached")
            return await self.complete(game_id)
        await self.start_countdown_if_ready(game)
        return await self.get_game(game_id)

    async def start_countdown_if_ready(self, game: GameSchema, now: datetime | None = None) -> GameSchema:
        if (
            game.game_kind != GameKind.weighted
            or game.state != GameState.open
            or game.timer_start_at is not None
            or unique_players(game.entries) < self.settings.jackpot_min_players
        ):
            return game
        now = now or datetime.now()
        request = StartTimerRequest(
            game_id=game.game_id,
            timer_start_at=now,
            timer_end_at=now + timedelta(seconds=self.settings.jackpot_countdown_seconds),
        )
        try:
            game = await self._rpc("startTimer", lambda: self.store.start_timer(request))
        except ConcurrentTransitionConflict:
            return await self.get_game(game.game_id)
        logging.info(f"Game {game.game_id}: countdown started, ends {game.timer_end_at}")
        await self.publisher.publish(
            game.game_id,
            "countdown_started",
            {"timer_start_at": game.timer_start_at, "timer_end_at": game.timer_end_at,
             "countdown_seconds": self.settings.jackpot_countdown_seconds,
             "player_count": unique_players(game.entries)},
        )
        return game

    # ---- transitions --------------------------------------------------------

    async def lock(self, game_id: UUID) -> GameSchema:
        """Freeze the entry set. Locking an already locked game is a no-op."""
        request = TransitionRequest(game_id=game_id, expected_state=GameState.open)
        try:
            game = await self._rpc("lockGame", lambda: self.store.lock_game(request))
        except ConcurrentTransitionConflict:
            game = await self.get_game(game_id)
            if game.state == GameState.cancelled:
                raise GameNotOpen(f"game {game_id} was cancelled")
            return game
        await self.publisher.publish(
            game_id, "locked", {"total_stake": game.total_stake, "entry_count": game.entry_count}
        )
        return game

    async def resolve(self, game_id: UUID) -> GameSchema:
        """Reveal the secret, derive the outcome and record it exactly once

        Raises:
            InvalidTransition: the game is not locked, is being cancelled or lacks players
        """
        game = await self.get_game(game_id)
        if game.state in (GameState.resolved, GameState.settled):
            return game
        if game.state != GameState.locked or game.cancel_requested:
            raise InvalidTransition(f"cannot resolve a {game.state.value} game")
        if unique_players(game.entries) < 2:
            raise InvalidTransition(f"game {game_id} needs at least two participants")

        client_seed = build_client_seed(game.entries, game.game_kind)
        participants = (
            weighted_participants(game.entries) if game.game_kind == GameKind.weighted else None
        )
        record = derive_outcome(game.secret, client_seed, game.game_kind, participants)
        if game.game_kind == GameKind.binary:
            winner_id = binary_winner(game.entries, record.outcome)
        else:
            winner_id = record.outcome

        request = RecordOutcomeRequest(
            game_id=game_id,
            client_seed=client_seed,
            derivation_hash=record.derivation_hash,
            roll=record.roll,
            outcome=record.outcome,
            winner_id=winner_id,
        )
        try:
            game = await self._rpc("recordOutcome", lambda: self.store.record_outcome(request))
        except ConcurrentTransitionConflict:
            game = await self.get_game(game_id)
            if game.state in (GameState.resolved, GameState.settled):
                logging.info(f"Game {game_id} already resolved by another worker")
                return game
            raise InvalidTransition(f"cannot resolve a {game.state.value} game")

        logging.info(f"Game {game_id} resolved: outcome={record.outcome} winner={winner_id}")
        await self.publisher.publish(
            game_id, "resolved", {"outcome": record.outcome, "winner_id": winner_id}
        )
        return game

    async def settle(self, game_id: UUID) -> GameSchema:
        """Pay the pool to the winner and mark the game settled

        Raises:
            PayoutFailed: the ledger kept failing; the game stays resolved and can be retried
        """
        game = await self.get_game(game_id)
        if game.state == GameState.settled:
            return game
        if game.state != GameState.resolved:
            raise InvalidTransition(f"cannot settle a {game.state.value} game")

        amount = payout_amount(game.total_stake, game.house_fee_percent)
        if amount > 0:
            try:
                await self._ledger_call(
                    "payout",
                    lambda: self.ledger.credit(
                        game.winner_id, amount, payout_key(game_id), f"{game_label(game)} winnings"
                    ),
                )
            except GameError as e:
                await self.store.record_payout_failure(game_id)
                self.error_log.log_error(
                    "Payout failed",
                    game_label(game),
                    {"game_id": str(game_id), "winner_id": game.winner_id, "kind": e.kind.value},
                )
                raise PayoutFailed(f"payout for game {game_id} is pending") from e

        try:
            game = await self._rpc("markSettled", lambda: self.store.mark_settled(game_id))
        except ConcurrentTransitionConflict:
            game = await self.get_game(game_id)
            if game.state == GameState.settled:
                return game
            raise InvalidTransition(f"cannot settle a {game.state.value} game")

        logging.info(f"Game {game_id} settled: {amount} to {game.winner_id}")
        # Settled games publish the revealed values so clients can verify them.
        await self.publisher.publish(
            game_id,
            "settled",
            {"outcome": game.outcome, "winner_id": game.winner_id, "payout": amount,
             "secret": game.secret, "client_seed": game.client_seed,
             "derivation_hash": game.derivation_hash},
        )
        return game

    async def complete(self, game_id: UUID) -> GameSchema:
        await self.lock(game_id)
        await self.resolve(game_id)
        return await self.settle(game_id)

    async def cancel(self, game_id: UUID) -> GameSchema:
        """Freeze the game, refund every participant, then mark it cancelled

        Raises:
            InvalidTransition: the game is already resolved or settled
            PayoutFailed: a refund kept failing; the game stays frozen and can be retried
        """
        game = await self.get_game(game_id)
        if game.state == GameState.cancelled:
            return game
        if game.state in (GameState.resolved, GameState.settled):
            raise InvalidTransition(f"cannot cancel a {game.state.value} game")

        if not game.cancel_requested:
            try:
                game = await self._rpc("requestCancel", lambda: self.store.request_cancel(game_id))
            except InvalidTransition:
                game = await self.get_game(game_id)
                if game.state == GameState.cancelled:
                    return game
                raise

        for participant_id, amount in refunds_by_participant(game.entries):
            try:
                await self._ledger_call(
                    "refund",
                    lambda pid=participant_id, value=amount: self.ledger.credit(
                        pid, value, refund_key(game_id, pid), f"{game_label(game)} refund"
                    ),
                )
            except GameError as e:
                self.error_log.log_error(
                    "Refund failed",
                    game_label(game),
                    {"game_id": str(game_id), "participant_id": participant_id, "kind": e.kind.value},
                )
                raise PayoutFailed(f"refunds for game {game_id} are pending") from e

        try:
            game = await self._rpc("markCancelled", lambda: self.store.mark_cancelled(game_id))
        except ConcurrentTransitionConflict:
            game = await self.get_game(game_id)
            if game.state == GameState.cancelled:
                return game
            raise InvalidTransition(f"cannot cancel a {game.state.value} game")

        logging.info(f"Game {game_id} cancelled, {len(game.entries)} entries refunded")
        await self.publisher.publish(game_id, "cancelled", {"refunded_entries": len(game.entries)})
        return game
