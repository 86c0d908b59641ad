"""Periodic driver for everything that is not triggered by a request.

Runs on the APScheduler interval job. Each tick:
- completes jackpots whose countdown elapsed and starts missing countdowns
- cancels and refunds open games that went stale
- resumes games a crashed worker left locked or resolved
- makes sure a jackpot is open for new tickets
"""

import logging
from datetime import datetime
from typing import Dict

from src.domain.errors import GameError, PayoutFailed
from src.domain.game_rules import unique_players
from src.error_log import ErrorLog
from src.models.dc_models import GameKind, GameSettings, GameState
from src.models.schema_models import GameSchema
from src.services.settlement import SettlementMachine, game_label


class GameCoordinator:
    def __init__(self, machine: SettlementMachine, settings: GameSettings, error_log: ErrorLog):
        self.machine = machine
        self.settings = settings
        self.error_log = error_log

    def _report(self, error: GameError, game: GameSchema, action: str) -> None:
        # Payout failures are already in the error log.
        if isinstance(error, PayoutFailed):
            logging.warning(f"Game {game.game_id}: {action} pending: {error}")
            return
        self.error_log.log_error(
            f"{action} failed: {error}",
            game_label(game),
            {"game_id": str(game.game_id), "kind": error.kind.value},
        )

    async def _process_open(self, game: GameSchema, now: datetime, counts: Dict[str, int]) -> None:
        if game.game_kind == GameKind.weighted:
            if game.timer_end_at is not None:
                if now >= game.timer_end_at:
                    await self.machine.complete(game.game_id)
                    counts["completed"] += 1
                return
            if unique_players(game.entries) >= self.settings.jackpot_min_players:
                await self.machine.start_countdown_if_ready(game, now)
                counts["countdowns"] += 1
                return
        if game.expires_at is not None and now >= game.expires_at:
            logging.info(f"Game {game.game_id} expired without enough participants")
            await self.machine.cancel(game.game_id)
            counts["cancelled"] += 1

    async def _resume_locked(self, game: GameSchema, counts: Dict[str, int]) -> None:
        if game.cancel_requested or unique_players(game.entries) < 2:
            await self.machine.cancel(game.game_id)
            counts["cancelled"] += 1
            return
        await self.machine.resolve(game.game_id)
        await self.machine.settle(game.game_id)
        counts["completed"] += 1

    async def tick(self, now: datetime | None = None) -> Dict[str, int]:
        """Run one coordination pass

        Args:
            now (datetime | None): Clock override, defaults to datetime.now()

        Returns:
            Dict[str, int]: How many games were completed, cancelled, settled and created
        """
        now = now or datetime.now()
        counts = {"completed": 0, "cancelled": 0, "settled": 0, "countdowns": 0, "created": 0}

        for game in await self.machine.list_games([GameState.open]):
            try:
                await self._process_open(game, now, counts)
            except GameError as e:
                self._report(e, game, "open game processing")

        for game in await self.machine.list_games([GameState.locked]):
            try:
                await self._resume_locked(game, counts)
            except GameError as e:
                self._report(e, game, "resume")

        for game in await self.machine.list_games([GameState.resolved]):
            try:
                await self.machine.settle(game.game_id)
                counts["settled"] += 1
            except GameError as e:
                self._report(e, game, "payout")

        if await self.machine.current_jackpot() is None:
            try:
                await self.machine.create_jackpot()
                counts["created"] += 1
            except GameError as e:
                self.error_log.log_error(f"Could not open a jackpot: {e}", "jackpot")

        if any(counts.values()):
            logging.info(f"Coordinator tick: {counts}")
        return counts
