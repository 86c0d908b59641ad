import asyncio

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPBasicCredentials

from src.authentication.basic_authentication import BasicAuthentication


def test_stored_user_can_authenticate(harness):
    auth = BasicAuthentication(harness.Session, "pepper")

    async def scenario():
        created = await auth.store_user_data("alice", "secret-pw")
        duplicate = await auth.store_user_data("alice", "other")
        user = await auth.check_user_data(HTTPBasicCredentials(username="alice", password="secret-pw"))
        return created, duplicate, user

    created, duplicate, user = asyncio.run(scenario())
    assert created.username == "alice"
    assert created.hash_password != "secret-pw"
    assert duplicate is None
    assert user.participant_id == "alice"


@pytest.mark.parametrize("username, password", [("alice", "wrong"), ("mallory", "secret-pw")])
def test_bad_credentials_are_rejected(harness, username, password):
    auth = BasicAuthentication(harness.Session, "pepper")

    async def scenario():
        await auth.store_user_data("alice", "secret-pw")
        await auth.check_user_data(HTTPBasicCredentials(username=username, password=password))

    with pytest.raises(HTTPException) as exc:
        asyncio.run(scenario())
    assert exc.value.status_code == 401
