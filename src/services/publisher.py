import json
import logging
from datetime import datetime
from uuid import UUID

from redis.asyncio import Redis
from redis.exceptions import RedisError

LOBBY_CHANNEL = "games"


def game_channel(game_id: UUID) -> str:
    return f"game:{game_id}"


class EventPublisher:
    """Fire-and-forget announcements of game transitions over Redis pub/sub.

    Clients only use these for display; a failed publish is logged and dropped.
    """

    def __init__(self, redis: Redis | None):
        self.redis: Redis | None = redis

    async def publish(self, game_id: UUID, event: str, payload: dict | None = None) -> bool:
        """Publish event on the game channel and the lobby channel

        Args:
            game_id (UUID): The game the event belongs to
            event (str): created, entry_added, countdown_started, locked, resolved, settled, cancelled
            payload (dict | None): Extra public fields for the event

        Returns:
            bool: True if the transport accepted the message
        """
        if self.redis is None:
            return False
        message = json.dumps(
            {
                "type": event,
                "game_id": str(game_id),
                "timestamp": datetime.now().isoformat(),
                **(payload or {}),
            },
            default=str,
        )
        try:
            await self.redis.publish(game_channel(game_id), message)
            await self.redis.publish(LOBBY_CHANNEL, message)
        except (RedisError, OSError) as e:
            logging.warning(f"Failed to publish {event} for game {game_id}: {e}")
            return False
        logging.debug(f"Published {event} for game {game_id}")
        return True
