import hashlib
import hmac
import re
import secrets

import pytest

from src.domain.errors import InvalidInput, RandomSourceUnavailable
from src.domain.fairness import derive_outcome, generate_commitment, hash_secret, pick_weighted_winner
from src.models.dc_models import GameKind

CLIENT_SEED = "playerXchoiceheads-playerYchoicetails"
JACKPOT = [("a", 10), ("b", 20), ("c", 70)]


def reference_hmac(secret: str, client_seed: str) -> str:
    return hmac.new(secret.encode(), client_seed.encode(), hashlib.sha256).hexdigest()


def test_commitment_is_sha256_of_a_256_bit_secret():
    commitment = generate_commitment()
    assert re.fullmatch(r"[0-9a-f]{64}", commitment.secret)
    assert commitment.secret_commitment == hashlib.sha256(commitment.secret.encode()).hexdigest()
    assert hash_secret(commitment.secret) == commitment.secret_commitment


def test_commitments_are_unique():
    assert len({generate_commitment().secret for _ in range(50)}) == 50


def test_unavailable_random_source_raises(monkeypatch):
    def broken(_):
        raise OSError("no entropy")

    monkeypatch.setattr(secrets, "token_hex", broken)
    with pytest.raises(RandomSourceUnavailable):
        generate_commitment()


def test_binary_outcome_matches_independent_computation():
    secret = "a" * 64
    digest = reference_hmac(secret, CLIENT_SEED)
    expected = "heads" if int(digest[:8], 16) % 2 == 0 else "tails"

    record = derive_outcome(secret, CLIENT_SEED, GameKind.binary)
    assert record.derivation_hash == digest
    assert record.outcome == expected
    assert record.roll == int(digest[:8], 16)


def test_derivation_is_deterministic():
    secret = generate_commitment().secret
    first = derive_outcome(secret, CLIENT_SEED, GameKind.binary)
    second = derive_outcome(secret, CLIENT_SEED, GameKind.binary)
    assert first == second


@pytest.mark.parametrize(
    "roll, winner",
    [(0, "a"), (9, "a"), (10, "b"), (29, "b"), (30, "c"), (85, "c"), (99, "c")],
)
def test_weighted_walk_uses_cumulative_ranges(roll, winner):
    assert pick_weighted_winner(roll, JACKPOT) == winner


def test_weighted_walk_rejects_roll_outside_total():
    with pytest.raises(InvalidInput):
        pick_weighted_winner(100, JACKPOT)


def test_weighted_outcome_uses_full_hash_modulo_total():
    secret = "b" * 64
    seed = "aamount10-bamount20-camount70"
    digest = reference_hmac(secret, seed)

    record = derive_outcome(secret, seed, GameKind.weighted, JACKPOT)
    assert record.roll == int(digest, 16) % 100
    assert record.outcome == pick_weighted_winner(record.roll, JACKPOT)


def test_single_participant_always_wins():
    for index in range(20):
        record = derive_outcome(f"secret{index}", "solo", GameKind.weighted, [("solo", 5)])
        assert record.outcome == "solo"


@pytest.mark.parametrize(
    "secret, seed, kind, participants",
    [
        ("", CLIENT_SEED, GameKind.binary, None),
        ("abc", "", GameKind.binary, None),
        ("abc", "seed", GameKind.weighted, None),
        ("abc", "seed", GameKind.weighted, []),
        ("abc", "seed", GameKind.weighted, [("a", 0)]),
        ("abc", "seed", GameKind.weighted, [("", 5)]),
        ("abc", "seed", "ternary", None),
    ],
)
def test_invalid_derivation_input(secret, seed, kind, participants):
    with pytest.raises(InvalidInput):
        derive_outcome(secret, seed, kind, participants)
