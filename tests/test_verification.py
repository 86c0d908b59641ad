import asyncio

import pytest

from src.domain.errors import InvalidInput
from src.domain.fairness import derive_outcome, generate_commitment
from src.models.dc_models import GameKind, VerificationFailure
from src.services.verification import verify, verify_game

CLIENT_SEED = "playerXchoiceheads-playerYchoicetails"
JACKPOT = [("a", 10), ("b", 20), ("c", 70)]


@pytest.fixture
def settled_binary():
    commitment = generate_commitment()
    record = derive_outcome(commitment.secret, CLIENT_SEED, GameKind.binary)
    return commitment, record


def test_recorded_values_verify(settled_binary):
    commitment, record = settled_binary
    result = verify(None, commitment.secret, CLIENT_SEED, record.outcome, commitment.secret_commitment)
    assert result.valid
    assert result.reason is None
    assert result.derivation_hash == record.derivation_hash


def test_wrong_secret_is_a_commitment_mismatch(settled_binary):
    commitment, record = settled_binary
    result = verify(None, "f" * 64, CLIENT_SEED, record.outcome, commitment.secret_commitment)
    assert not result.valid
    assert result.reason == VerificationFailure.commitment_mismatch


def test_flipped_outcome_is_an_outcome_mismatch(settled_binary):
    commitment, record = settled_binary
    flipped = "tails" if record.outcome == "heads" else "heads"
    result = verify(None, commitment.secret, CLIENT_SEED, flipped, commitment.secret_commitment)
    assert not result.valid
    assert result.reason == VerificationFailure.outcome_mismatch
    assert result.outcome == record.outcome


def test_tampered_client_seed_changes_the_derivation(settled_binary):
    commitment, record = settled_binary
    result = verify(
        None,
        commitment.secret,
        CLIENT_SEED + "x",
        record.outcome,
        commitment.secret_commitment,
        recorded_derivation_hash=record.derivation_hash,
    )
    assert not result.valid
    assert result.reason == VerificationFailure.outcome_mismatch


def test_weighted_verification_needs_participants():
    commitment = generate_commitment()
    result = verify(None, commitment.secret, "seed", "a", commitment.secret_commitment, GameKind.weighted)
    assert result.reason == VerificationFailure.invalid_input


def test_weighted_values_verify():
    commitment = generate_commitment()
    record = derive_outcome(commitment.secret, "seed", GameKind.weighted, JACKPOT)
    result = verify(
        None, commitment.secret, "seed", record.outcome, commitment.secret_commitment,
        GameKind.weighted, JACKPOT,
    )
    assert result.valid


def test_stored_game_verifies_once_settled(harness):
    async def scenario():
        await harness.fund("maker", 50)
        await harness.fund("taker", 50)
        game = await harness.machine.create_coinflip("maker", 20, "heads")
        with pytest.raises(InvalidInput):
            verify_game(game)
        settled = await harness.machine.join_coinflip(game.game_id, "taker")
        return verify_game(settled)

    result = asyncio.run(scenario())
    assert result.valid


def test_unknown_game_kind_is_invalid_input(settled_binary):
    commitment, record = settled_binary
    result = verify(None, commitment.secret, CLIENT_SEED, record.outcome, commitment.secret_commitment, "ternary")
    assert not result.valid
    assert result.reason == VerificationFailure.invalid_input
