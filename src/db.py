import pathlib

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.load_secrets import db_backend, db_name, host, password, port, sqlite_path, user

POSTGRES_DATABASE_URL = (
    f"postgresql+asyncpg://{user}:{password}@{host}:{port}/{db_name}"
)


def sqlite_url_for(path: str) -> str:
    """Build an aiosqlite url, resolving relative paths against the repository root."""
    file_path = pathlib.Path(path)
    if not file_path.is_absolute():
        file_path = pathlib.Path(__file__).parents[1] / file_path
    return f"sqlite+aiosqlite:///{file_path}"


def build_engine(backend: str = db_backend) -> AsyncEngine:
    if backend == "sqlite":
        return create_async_engine(url=sqlite_url_for(sqlite_path), echo=False)
    return create_async_engine(POSTGRES_DATABASE_URL, pool_size=20, max_overflow=20)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        autocommit=False,
        class_=AsyncSession,
        autoflush=True,
        expire_on_commit=False,
        bind=engine,
    )


engine = build_engine()
# Centralized session factory to avoid creating it in router modules.
Session = build_session_factory(engine)
