"""Application singletons and the FastAPI providers that hand them to routers.

Tests swap any of these through ``app.dependency_overrides``.
"""

from fastapi import Depends
from fastapi.security import HTTPBasicCredentials
from redis.asyncio import Redis

from src.authentication.basic_authentication import BasicAuthentication, security
from src.db import Session
from src.error_log import ErrorLog
from src.load_secrets import pepper_data, redis_host, redis_port, settings
from src.models.basic_authentication_models import UserModel
from src.rate_limiter import RateLimiter
from src.services.coordinator import GameCoordinator
from src.services.game_db import GameStore
from src.services.ledger import SqlLedger
from src.services.publisher import EventPublisher
from src.services.settlement import SettlementMachine

redis = Redis(host=redis_host, port=redis_port, decode_responses=True, health_check_interval=30)

error_log = ErrorLog(settings.error_log_size)
ledger = SqlLedger(Session)
machine = SettlementMachine(GameStore(Session), ledger, EventPublisher(redis), settings, error_log)
coordinator = GameCoordinator(machine, settings, error_log)
basic_auth = BasicAuthentication(Session, pepper_data)
rate_limiter = RateLimiter(settings.rate_limit_max_attempts, settings.rate_limit_window_seconds)


def get_machine() -> SettlementMachine:
    return machine


def get_ledger() -> SqlLedger:
    return ledger


def get_error_log() -> ErrorLog:
    return error_log


def get_rate_limiter() -> RateLimiter:
    return rate_limiter


def get_redis() -> Redis:
    return redis


async def get_current_user(credentials: HTTPBasicCredentials = Depends(security)) -> UserModel:
    return await basic_auth.check_user_data(credentials)
