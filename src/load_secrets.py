import os
from dotenv import load_dotenv

from src.models.dc_models import GameSettings

load_dotenv()

db_backend = os.getenv("DB_BACKEND", "postgres")
user = os.getenv("DB_USER", "postgres")
password = os.getenv("DB_PASSWORD", "postgres")
host = os.getenv("DB_HOST", "localhost")
port = os.getenv("DB_PORT", "5432")
db_name = os.getenv("DB_NAME", "casino")
sqlite_path = os.getenv("SQLITE_PATH", "casino.sqlite3")
redis_host = os.getenv("REDIS_HOST", "redis")
redis_port = int(os.getenv("REDIS_PORT", "6379"))
pepper_data = os.getenv("PEPPER_DATA", "")

settings = GameSettings(
    house_fee_percent=int(os.getenv("HOUSE_FEE_PERCENT", "0")),
    coinflip_open_seconds=int(os.getenv("COINFLIP_OPEN_SECONDS", "600")),
    jackpot_open_seconds=int(os.getenv("JACKPOT_OPEN_SECONDS", "3600")),
    jackpot_countdown_seconds=int(os.getenv("JACKPOT_COUNTDOWN_SECONDS", "45")),
    jackpot_min_players=int(os.getenv("JACKPOT_MIN_PLAYERS", "2")),
    jackpot_max_entries=int(os.getenv("JACKPOT_MAX_ENTRIES", "100")),
    jackpot_ticket_price=int(os.getenv("JACKPOT_TICKET_PRICE", "1")),
    max_stake=int(os.getenv("MAX_STAKE", "100000")),
    payout_max_retries=int(os.getenv("PAYOUT_MAX_RETRIES", "3")),
    retry_delay_seconds=float(os.getenv("RETRY_DELAY_SECONDS", "1.0")),
    coordinator_interval_seconds=float(os.getenv("COORDINATOR_INTERVAL_SECONDS", "1")),
    rate_limit_max_attempts=int(os.getenv("RATE_LIMIT_MAX_ATTEMPTS", "10")),
    rate_limit_window_seconds=float(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60")),
    error_log_size=int(os.getenv("ERROR_LOG_SIZE", "50")),
)

if __name__ == "__main__":
    print(db_backend, user, host, port, db_name, redis_host, redis_port)
    print(settings.model_dump())
