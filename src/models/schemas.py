from sqlalchemy import UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, relationship
from sqlalchemy.schema import Column
from sqlalchemy.types import BigInteger, Boolean, Integer, String, Uuid, DateTime
from uuid6 import uuid7
from datetime import datetime


class Base(DeclarativeBase):
    pass


class Game(Base):
    __tablename__ = "games"
    game_id = Column(Uuid, primary_key=True, default=uuid7)
    game_kind = Column(String, nullable=False)
    state = Column(String, nullable=False, index=True)
    # Private until the game is settled.
    secret = Column(String, nullable=False)
    secret_commitment = Column(String(64), nullable=False)
    client_seed = Column(String, nullable=True)
    derivation_hash = Column(String(64), nullable=True)
    roll = Column(BigInteger, nullable=True)
    outcome = Column(String, nullable=True)
    winner_id = Column(String, nullable=True)
    total_stake = Column(BigInteger, nullable=False, default=0)
    entry_count = Column(Integer, nullable=False, default=0)
    max_entries = Column(Integer, nullable=True)
    stake_amount = Column(BigInteger, nullable=True)
    ticket_price = Column(BigInteger, nullable=True)
    house_fee_percent = Column(Integer, nullable=False, default=0)
    cancel_requested = Column(Boolean, nullable=False, default=False)
    payout_failures = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.now)
    expires_at = Column(DateTime, nullable=True)
    timer_start_at = Column(DateTime, nullable=True)
    timer_end_at = Column(DateTime, nullable=True)
    locked_at = Column(DateTime, nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    settled_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    entries = relationship(
        "GameEntry",
        primaryjoin="Game.game_id == foreign(GameEntry.game_id)",
        back_populates="game",
        order_by="GameEntry.position",
        cascade="all, delete",
    )


class GameEntry(Base):
    __tablename__ = "game_entries"
    __table_args__ = (UniqueConstraint("game_id", "position"),)
    entry_id = Column(Uuid, primary_key=True, default=uuid7)
    game_id = Column(Uuid, nullable=False, index=True)
    position = Column(Integer, nullable=False)
    participant_id = Column(String, nullable=False)
    amount = Column(BigInteger, nullable=False)
    choice = Column(String, nullable=True)
    tickets = Column(Integer, nullable=True)
    seed = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.now)

    game = relationship(
        "Game",
        primaryjoin="foreign(GameEntry.game_id) == Game.game_id",
        back_populates="entries",
    )


class LedgerAccount(Base):
    __tablename__ = "ledger_accounts"
    participant_id = Column(String, primary_key=True)
    balance = Column(BigInteger, nullable=False, default=0)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)


class LedgerTransaction(Base):
    __tablename__ = "ledger_transactions"
    transaction_id = Column(Uuid, primary_key=True, default=uuid7)
    idempotency_key = Column(String, nullable=False, unique=True, index=True)
    participant_id = Column(String, nullable=False, index=True)
    # Positive for credits, negative for debits.
    amount = Column(BigInteger, nullable=False)
    kind = Column(String, nullable=False)
    description = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.now)
