import logging
from collections import deque
from datetime import datetime
from typing import List

from src.models.dc_models import ErrorLogEntryModel


class ErrorLog:
    """Bounded in-memory log of operational errors for the ops endpoint.

    One instance is created per application and injected where needed.
    """

    def __init__(self, max_entries: int = 50):
        self.entries: deque = deque(maxlen=max_entries)

    def log_error(self, error: str, game: str, context: dict | None = None) -> ErrorLogEntryModel:
        """Record an error and mirror it to the logging module

        Args:
            error (str): Short description
            game (str): "coinflip", "jackpot" or "system"
            context (dict | None): Extra identifiers, never secrets
        """
        entry = ErrorLogEntryModel(
            timestamp=datetime.now(), game=game, error=error, context=context or {}
        )
        self.entries.append(entry)
        logging.error(f"[{game.upper()}] {error} {entry.context}")
        return entry

    def get_errors(self, game: str | None = None) -> List[ErrorLogEntryModel]:
        if game:
            return [entry for entry in self.entries if entry.game == game]
        return list(self.entries)

    def clear(self) -> None:
        self.entries.clear()
