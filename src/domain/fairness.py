"""Provably-fair commit/reveal primitives.

The server secret is committed (SHA-256) before any entry is accepted and only
revealed once the game is settled. The outcome is read from
HMAC-SHA256(key=secret, message=client_seed), so anybody holding the revealed
secret and the client seed can recompute it.

Rule of thumb:
- OK: hashing, integer arithmetic, validation.
- Not OK: touching DB sessions, Redis, FastAPI, datetime.now(), etc.
"""

import hashlib
import hmac
import logging
import secrets
from typing import List, NamedTuple, Optional, Sequence, Tuple

from src.domain.errors import InvalidInput, RandomSourceUnavailable
from src.models.dc_models import CoinSide, GameKind

SECRET_BYTES = 32  # 256 bits
BINARY_PREFIX_HEX = 8


class Commitment(NamedTuple):
    secret: str
    secret_commitment: str


class OutcomeRecord(NamedTuple):
    derivation_hash: str
    outcome: str
    roll: int


def hash_secret(secret: str) -> str:
    """Return the public commitment (hex SHA-256) of a secret."""
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


def hmac_sha256_hex(key: str, message: str) -> str:
    return hmac.new(key.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def generate_commitment() -> Commitment:
    """Draw a fresh 256-bit secret from the OS CSPRNG and commit to it.

    Raises:
        RandomSourceUnavailable: the OS random source could not be read.
    """
    try:
        secret = secrets.token_hex(SECRET_BYTES)
    except (OSError, NotImplementedError) as e:
        logging.error(f"Secure random source unavailable: {e}")
        raise RandomSourceUnavailable("secure random source unavailable") from e
    return Commitment(secret=secret, secret_commitment=hash_secret(secret))


def pick_weighted_winner(roll: int, participants: Sequence[Tuple[str, int]]) -> str:
    """Walk the ordered participants until the running weight exceeds roll.

    Args:
        roll (int): Value in [0, total weight)
        participants (Sequence[Tuple[str, int]]): (participant_id, weight) in canonical order

    Returns:
        str: participant_id of the winner
    """
    cumulative = 0
    for participant_id, weight in participants:
        cumulative += weight
        if roll < cumulative:
            return participant_id
    raise InvalidInput(f"roll {roll} is outside the total weight {cumulative}")


def _validate_participants(participants: Optional[Sequence[Tuple[str, int]]]) -> List[Tuple[str, int]]:
    if not participants:
        raise InvalidInput("weighted draw requires at least one participant")
    checked = []
    for participant_id, weight in participants:
        if not participant_id:
            raise InvalidInput("participant id must not be empty")
        if isinstance(weight, bool) or not isinstance(weight, int) or weight <= 0:
            raise InvalidInput(f"weight for {participant_id} must be a positive integer")
        checked.append((participant_id, weight))
    return checked


def derive_outcome(
    secret: str,
    client_seed: str,
    game_kind: GameKind,
    participants: Optional[Sequence[Tuple[str, int]]] = None,
) -> OutcomeRecord:
    """Derive the game outcome from the revealed secret and the client seed.

    binary: the first 8 hex characters of the HMAC are read as an unsigned
    integer, even is heads and odd is tails.

    weighted: the whole 256-bit HMAC is reduced modulo the total weight, which
    keeps the modulo bias below total_weight / 2**256. The winner is found by
    walking the participants in their canonical order.

    Raises:
        InvalidInput: empty secret or client seed, or bad participant list
    """
    if not secret:
        raise InvalidInput("secret must not be empty")
    if not client_seed:
        raise InvalidInput("client seed must not be empty")
    try:
        game_kind = GameKind(game_kind)
    except ValueError as e:
        raise InvalidInput(f"unknown game kind {game_kind}") from e

    if game_kind == GameKind.weighted:
        checked = _validate_participants(participants)

    derivation_hash = hmac_sha256_hex(secret, client_seed)

    if game_kind == GameKind.binary:
        roll = int(derivation_hash[:BINARY_PREFIX_HEX], 16)
        side = CoinSide.heads if roll % 2 == 0 else CoinSide.tails
        return OutcomeRecord(derivation_hash=derivation_hash, outcome=side.value, roll=roll)

    total_weight = sum(weight for _, weight in checked)
    roll = int(derivation_hash, 16) % total_weight
    winner_id = pick_weighted_winner(roll, checked)
    return OutcomeRecord(derivation_hash=derivation_hash, outcome=winner_id, roll=roll)
