from typing import List

from src.domain.game_rules import canonical_entries, unique_players, win_chances
from src.models.dc_models import (
    EntryModel,
    FairnessModel,
    GameModel,
    GameState,
    HistoryItemModel,
    ParticipantShareModel,
)
from src.models.schema_models import GameSchema


class DataConverter:
    """This class is used to convert stored games into the models sent to clients."""

    def convert_participants(self, game: GameSchema) -> List[ParticipantShareModel]:
        return [
            ParticipantShareModel(participant_id=pid, amount=amount, win_chance=round(chance, 6))
            for pid, amount, chance in win_chances(game.entries)
        ]

    def convert_gameschema_to_gamemodel(self, game: GameSchema) -> GameModel:
        """Convert the GameSchema to the GameModel to send client

        The outcome stays hidden until the game is settled, the secret is never part of it.

        Args:
            game (GameSchema): The stored game with its entries

        Returns:
            GameModel: Public view of the game
        """
        revealed = game.state == GameState.settled
        return GameModel(
            game_id=game.game_id,
            game_kind=game.game_kind,
            state=game.state,
            secret_commitment=game.secret_commitment,
            total_stake=game.total_stake,
            entries=[EntryModel.model_validate(entry) for entry in canonical_entries(game.entries)],
            participants=self.convert_participants(game),
            stake_amount=game.stake_amount,
            ticket_price=game.ticket_price,
            outcome=game.outcome if revealed else None,
            winner_id=game.winner_id if revealed else None,
            payout_pending=game.state == GameState.resolved and game.payout_failures > 0,
            timer_end_at=game.timer_end_at,
            expires_at=game.expires_at,
            created_at=game.created_at,
            settled_at=game.settled_at,
        )

    def convert_gameschema_to_fairnessmodel(self, game: GameSchema) -> FairnessModel:
        """Everything a player needs to re-derive the outcome. Secret values only after settlement."""
        fairness = FairnessModel(
            game_id=game.game_id,
            game_kind=game.game_kind,
            state=game.state,
            secret_commitment=game.secret_commitment,
            participants=self.convert_participants(game),
        )
        if game.state == GameState.settled:
            fairness.secret = game.secret
            fairness.client_seed = game.client_seed
            fairness.derivation_hash = game.derivation_hash
            fairness.roll = game.roll
            fairness.outcome = game.outcome
        return fairness

    def convert_gameschema_to_historyitem(self, game: GameSchema) -> HistoryItemModel:
        return HistoryItemModel(
            game_id=game.game_id,
            game_kind=game.game_kind,
            total_stake=game.total_stake,
            player_count=unique_players(game.entries),
            outcome=game.outcome,
            winner_id=game.winner_id,
            settled_at=game.settled_at,
        )
