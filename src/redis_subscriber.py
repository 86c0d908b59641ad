import json
import logging
from typing import AsyncGenerator
from uuid import UUID

from redis.asyncio import Redis

from src.converter import DataConverter
from src.models.dc_models import GameModel
from src.services.publisher import game_channel
from src.services.settlement import SettlementMachine

HEART_BEAT = 15
TERMINAL_EVENTS = ("settled", "cancelled")

data_converter = DataConverter()


def sse_message(event: str, payload: str) -> str:
    return f"event: {event}\ndata: {payload}\n\n"


class GameEventSubscriber:
    """Redis subscriber class to turn game events into SSE messages."""

    def __init__(self, machine: SettlementMachine, game_id: UUID):
        self.machine: SettlementMachine = machine
        self.game_id: UUID = game_id

    async def snapshot(self) -> str:
        game = await self.machine.get_game(self.game_id)
        game_model: GameModel = data_converter.convert_gameschema_to_gamemodel(game)
        return game_model.model_dump_json()

    async def event_generator(self, redis: Redis) -> AsyncGenerator[str, None]:
        """Event generator to handle SSE events.

        Sends the current game first, then every published event of the game until it
        is settled or cancelled. A comment line is sent as heartbeat while idle.

        Args:
            redis (Redis): Redis connection object.
        """
        channel = game_channel(self.game_id)
        pubsub = redis.pubsub()
        await pubsub.subscribe(channel)
        try:
            snapshot = await self.snapshot()
            yield sse_message("game_state", snapshot)
            if json.loads(snapshot)["state"] in TERMINAL_EVENTS:
                return

            while True:
                msg = await pubsub.get_message(ignore_subscribe_messages=True, timeout=HEART_BEAT)
                if msg is None:
                    yield ": heartbeat\n\n"
                    continue
                if msg["type"] != "message":
                    continue
                payload = msg["data"]
                event = json.loads(payload).get("type", "game_event")
                logging.debug(f"Forwarding {event} for game {self.game_id}")
                yield sse_message(event, payload)
                if event in TERMINAL_EVENTS:
                    return
        finally:
            logging.info(f"Unsubscribing from channel {channel}")
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()
