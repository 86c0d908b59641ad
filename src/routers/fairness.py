from uuid import UUID

from fastapi import APIRouter, Depends

from src.converter import DataConverter
from src.dependencies import get_machine
from src.domain.errors import GameError
from src.models.dc_models import (
    FairnessModel,
    VerificationRequestModel,
    VerificationResultModel,
)
from src.routers.errors import to_http_exception
from src.services.settlement import SettlementMachine
from src.services.verification import verify, verify_game

fairness_router = APIRouter()
data_converter = DataConverter()


class FairnessAPI:
    @staticmethod
    @fairness_router.get("/games/{game_id}/fairness", response_model=FairnessModel)
    async def fairness(game_id: UUID, machine: SettlementMachine = Depends(get_machine)) -> FairnessModel:
        """Provably-fair data of a game

        Before settlement only the commitment is published, afterwards also the
        secret, client seed, derivation hash and roll.
        """
        try:
            game = await machine.get_game(game_id)
        except GameError as e:
            raise to_http_exception(e) from e
        return data_converter.convert_gameschema_to_fairnessmodel(game)

    @staticmethod
    @fairness_router.get("/games/{game_id}/verify", response_model=VerificationResultModel)
    async def verify_stored_game(
        game_id: UUID, machine: SettlementMachine = Depends(get_machine)
    ) -> VerificationResultModel:
        try:
            game = await machine.get_game(game_id)
            return verify_game(game)
        except GameError as e:
            raise to_http_exception(e) from e

    @staticmethod
    @fairness_router.post("/verify", response_model=VerificationResultModel)
    async def verify_values(body: VerificationRequestModel) -> VerificationResultModel:
        """Stateless re-check of values a player copied from a settled game"""
        participants = [(p.participant_id, p.amount) for p in body.participants] or None
        return verify(
            body.game_id,
            body.secret,
            body.client_seed,
            body.recorded_outcome,
            body.recorded_commitment,
            body.game_kind,
            participants,
        )
