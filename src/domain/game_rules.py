"""Game rules that are independent from HTTP and DB.

Entries are always handled in their canonical order (position, i.e. the order
in which the store accepted them), so a verifier re-running these functions on
the published entry list gets exactly the same client seed and weights.
"""

from typing import Dict, List, Sequence, Tuple

from src.domain.errors import InvalidInput
from src.models.dc_models import CoinSide, GameKind
from src.models.schema_models import EntrySchema

CLIENT_SEED_SEPARATOR = "-"


def canonical_entries(entries: Sequence[EntrySchema]) -> List[EntrySchema]:
    return sorted(entries, key=lambda entry: entry.position)


def client_seed_part(entry: EntrySchema, game_kind: GameKind) -> str:
    """Render one entry into its client seed fragment.

    binary:   "{participant}choice{side}"
    weighted: "{participant}amount{amount}"
    A seed submitted by the player is appended as "seed{value}".
    """
    if game_kind == GameKind.binary:
        choice = entry.choice.value if isinstance(entry.choice, CoinSide) else entry.choice
        part = f"{entry.participant_id}choice{choice}"
    else:
        part = f"{entry.participant_id}amount{entry.amount}"
    if entry.seed:
        part += f"seed{entry.seed}"
    return part


def build_client_seed(entries: Sequence[EntrySchema], game_kind: GameKind) -> str:
    """Build the deterministic client seed from the frozen entry set.

    Raises:
        InvalidInput: there are no entries to build a seed from
    """
    if not entries:
        raise InvalidInput("cannot build a client seed without entries")
    return CLIENT_SEED_SEPARATOR.join(
        client_seed_part(entry, game_kind) for entry in canonical_entries(entries)
    )


def weighted_participants(entries: Sequence[EntrySchema]) -> List[Tuple[str, int]]:
    """Aggregate stakes per participant, ordered by each participant's first entry."""
    totals: Dict[str, int] = {}
    for entry in canonical_entries(entries):
        totals[entry.participant_id] = totals.get(entry.participant_id, 0) + entry.amount
    return list(totals.items())


def unique_players(entries: Sequence[EntrySchema]) -> int:
    return len({entry.participant_id for entry in entries})


def binary_winner(entries: Sequence[EntrySchema], outcome: str) -> str:
    for entry in canonical_entries(entries):
        choice = entry.choice.value if isinstance(entry.choice, CoinSide) else entry.choice
        if choice == outcome:
            return entry.participant_id
    raise InvalidInput(f"no entry picked {outcome}")


def payout_amount(total_stake: int, house_fee_percent: int) -> int:
    """Pool minus the house fee. The fee is rounded down."""
    fee = (total_stake * house_fee_percent) // 100
    return max(total_stake - fee, 0)


def refunds_by_participant(entries: Sequence[EntrySchema]) -> List[Tuple[str, int]]:
    """One refund per participant matching everything they staked."""
    return weighted_participants(entries)


def validate_stake(amount: int, max_stake: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidInput("stake must be a positive integer")
    if amount > max_stake:
        raise InvalidInput(f"stake must not exceed {max_stake}")


def win_chances(entries: Sequence[EntrySchema]) -> List[Tuple[str, int, float]]:
    participants = weighted_participants(entries)
    total = sum(weight for _, weight in participants)
    if total == 0:
        return []
    return [(pid, weight, weight / total) for pid, weight in participants]
