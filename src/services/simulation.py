"""Statistical audit of the outcome derivation.

Runs many rounds with deterministic secrets and compares the observed outcome
frequencies with the expected ones (50/50 for coinflips, stake share for jackpots).
Used by the test-suite and runnable by operators:

    python -m src.services.simulation --rounds 20000
"""

import argparse
import hashlib
import logging
from typing import Dict, Sequence, Tuple

import numpy as np

from src.domain.fairness import derive_outcome
from src.models.dc_models import CoinSide, GameKind


def audit_secret(label: str, index: int) -> str:
    """Deterministic 64-hex secret so audits are reproducible"""
    return hashlib.sha256(f"{label}:{index}".encode("utf-8")).hexdigest()


def chi_square(observed: np.ndarray, expected: np.ndarray) -> float:
    observed = np.asarray(observed, dtype=np.float64)
    expected = np.asarray(expected, dtype=np.float64)
    return float(np.sum((observed - expected) ** 2 / expected))


def audit_binary(rounds: int, label: str = "coinflip-audit") -> Dict[str, float]:
    """Derive rounds coinflips and report the heads ratio

    Returns:
        Dict[str, float]: heads, tails, heads_ratio and chi_square against 50/50
    """
    counts = np.zeros(2, dtype=np.int64)
    for index in range(rounds):
        record = derive_outcome(
            audit_secret(label, index),
            f"player{index}choiceheads-opponent{index}choicetails",
            GameKind.binary,
        )
        counts[0 if record.outcome == CoinSide.heads.value else 1] += 1
    expected = np.full(2, rounds / 2)
    return {
        "heads": int(counts[0]),
        "tails": int(counts[1]),
        "heads_ratio": float(counts[0] / rounds),
        "chi_square": chi_square(counts, expected),
    }


def audit_weighted(
    participants: Sequence[Tuple[str, int]], rounds: int, label: str = "jackpot-audit"
) -> Dict[str, Dict[str, float]]:
    """Derive rounds jackpots over fixed participants and compare win rates with stake shares

    Args:
        participants (Sequence[Tuple[str, int]]): (participant_id, stake) in entry order
        rounds (int): Number of derivations

    Returns:
        Dict[str, Dict[str, float]]: per participant observed and expected win rate,
            plus "summary" with the chi_square statistic
    """
    ids = [pid for pid, _ in participants]
    weights = np.array([weight for _, weight in participants], dtype=np.float64)
    client_seed = "-".join(f"{pid}amount{weight}" for pid, weight in participants)

    wins = np.zeros(len(ids), dtype=np.int64)
    position = {pid: i for i, pid in enumerate(ids)}
    for index in range(rounds):
        record = derive_outcome(
            audit_secret(label, index), client_seed, GameKind.weighted, participants
        )
        wins[position[record.outcome]] += 1

    expected_rate = weights / weights.sum()
    observed_rate = wins / rounds
    report: Dict[str, Dict[str, float]] = {
        pid: {"observed": float(observed_rate[i]), "expected": float(expected_rate[i])}
        for i, pid in enumerate(ids)
    }
    report["summary"] = {"chi_square": chi_square(wins, expected_rate * rounds)}
    return report


def get_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Outcome derivation audit")
    parser.add_argument("--rounds", type=int, default=10000, help="Rounds per audit")
    return parser


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    args = get_parser().parse_args()
    logging.info(f"Binary: {audit_binary(args.rounds)}")
    logging.info(
        f"Weighted: {audit_weighted([('alice', 10), ('bob', 20), ('carol', 70)], args.rounds)}"
    )
