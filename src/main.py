import logging
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI

from src.crud import CreateData
from src.db import engine
from src.dependencies import coordinator, redis
from src.load_secrets import settings
from src.routers import fairness, games

scheduler = AsyncIOScheduler()
logging.basicConfig(level=logging.INFO)
logging.getLogger("aiosqlite").setLevel(logging.WARNING)
logging.getLogger("apscheduler").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app):
    """Create the tables and start the coordinator.
    This function is called to start the server.
    """
    await CreateData.create_table(engine)

    # Timers, stale games, interrupted settlements and the open jackpot round
    scheduler.add_job(
        coordinator.tick,
        "interval",
        seconds=settings.coordinator_interval_seconds,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    try:
        yield
    finally:
        scheduler.shutdown()
        await redis.aclose()
        await engine.dispose()
        logging.info("Stop Server")


app = FastAPI(lifespan=lifespan)
app.include_router(games.game_router)
app.include_router(fairness.fairness_router)


# if __name__ == "__main__":
#     uvicorn.run(app, host="0.0.0.0", port=8080)
