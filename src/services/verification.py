"""Independent re-check of a finished game.

Anybody holding the revealed secret, the client seed and the published
commitment can run this; it needs no privileges and has no side effects.
Mismatches are reported in the result, never raised.
"""

import hmac
import logging
from typing import Optional, Sequence, Tuple
from uuid import UUID

from src.domain.errors import InvalidInput
from src.domain.fairness import derive_outcome, hash_secret
from src.domain.game_rules import build_client_seed, weighted_participants
from src.models.dc_models import GameKind, GameState, VerificationFailure, VerificationResultModel
from src.models.schema_models import GameSchema


def verify(
    game_id: Optional[UUID],
    secret: str,
    client_seed: str,
    recorded_outcome: str,
    recorded_commitment: str,
    game_kind: GameKind = GameKind.binary,
    participants: Optional[Sequence[Tuple[str, int]]] = None,
    recorded_derivation_hash: Optional[str] = None,
) -> VerificationResultModel:
    """Recompute commitment and outcome and compare them with the recorded values

    Args:
        game_id (UUID | None): Only used for logging
        secret (str): Revealed server secret
        client_seed (str): Client seed the outcome was derived from
        recorded_outcome (str): "heads"/"tails" or the winning participant id
        recorded_commitment (str): Commitment published before entries opened
        game_kind (GameKind): binary or weighted
        participants (Sequence[Tuple[str, int]] | None): Ordered weights for weighted games
        recorded_derivation_hash (str | None): Optionally also compare the HMAC

    Returns:
        VerificationResultModel: valid flag and the first failing check
    """
    expected_commitment = hash_secret(secret or "").encode("utf-8")
    if not hmac.compare_digest(expected_commitment, (recorded_commitment or "").lower().encode("utf-8")):
        logging.info(f"Verification of game {game_id}: commitment mismatch")
        return VerificationResultModel(valid=False, reason=VerificationFailure.commitment_mismatch)

    try:
        record = derive_outcome(secret, client_seed, game_kind, participants)
    except InvalidInput as e:
        logging.info(f"Verification of game {game_id}: {e}")
        return VerificationResultModel(valid=False, reason=VerificationFailure.invalid_input)

    if record.outcome != recorded_outcome or (
        recorded_derivation_hash is not None
        and record.derivation_hash != recorded_derivation_hash.lower()
    ):
        logging.info(f"Verification of game {game_id}: outcome mismatch")
        return VerificationResultModel(
            valid=False,
            reason=VerificationFailure.outcome_mismatch,
            derivation_hash=record.derivation_hash,
            outcome=record.outcome,
        )

    return VerificationResultModel(
        valid=True, derivation_hash=record.derivation_hash, outcome=record.outcome
    )


def verify_game(game: GameSchema) -> VerificationResultModel:
    """Verify a settled game from its stored record, rebuilding the client seed from its entries

    Raises:
        InvalidInput: the game is not settled, so its secret is not public yet
    """
    if game.state != GameState.settled:
        raise InvalidInput("game is not settled yet")
    participants = weighted_participants(game.entries) if game.game_kind == GameKind.weighted else None
    rebuilt_seed = build_client_seed(game.entries, game.game_kind)
    if rebuilt_seed != game.client_seed:
        logging.warning(f"Game {game.game_id}: recorded client seed does not match its entries")
        return VerificationResultModel(valid=False, reason=VerificationFailure.outcome_mismatch)
    return verify(
        game.game_id,
        game.secret,
        game.client_seed,
        game.outcome,
        game.secret_commitment,
        game.game_kind,
        participants,
        game.derivation_hash,
    )
