import argparse
import asyncio
import logging
import secrets

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from sqlalchemy.ext.asyncio import async_sessionmaker

from src.authentication.basic_authentication_crud import (
    CreateAuthentication,
    ReadAuthentication,
    hash_password,
)
from src.models.basic_authentication_models import UserModel

security = HTTPBasic()
create_auth = CreateAuthentication()
read_auth = ReadAuthentication()


class BasicAuthentication:
    def __init__(self, Session: async_sessionmaker, pepper: str):
        self.Session: async_sessionmaker = Session
        self.pepper: str = pepper

    async def check_user_data(
        self, credentials: HTTPBasicCredentials = Depends(security)
    ) -> UserModel:
        """Check if the user data is valid. Called on every authenticated request

        Args:
            credentials (HTTPBasicCredentials, optional): Defaults to Depends(security).

        Raises:
            HTTPException: The user is not found in the database
            HTTPException: The password is incorrect

        Returns:
            UserModel: The authenticated user, its username is the participant id
        """
        async with self.Session() as session:
            user_data: UserModel | None = await read_auth.read_user_data(
                credentials.username, session
            )
        if user_data is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid username",
                headers={"WWW-Authenticate": "Basic"},
            )

        hashed_password = hash_password(credentials.password, user_data.salt, self.pepper)
        if not secrets.compare_digest(hashed_password, user_data.hash_password):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid password",
                headers={"WWW-Authenticate": "Basic"},
            )
        return user_data

    async def store_user_data(self, user_name: str, password: str) -> UserModel | None:
        async with self.Session() as session:
            return await create_auth.create_user_data(user_name, password, self.pepper, session)


def get_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Basic Authentication")
    parser.add_argument("--username", type=str, help="Username", required=True)
    parser.add_argument("--password", type=str, help="Password", required=True)
    return parser


async def main(user_name: str, password: str):
    from src.crud import CreateData
    from src.db import Session, engine
    from src.load_secrets import pepper_data

    await CreateData.create_table(engine)
    basic_auth = BasicAuthentication(Session, pepper_data)
    user_data = await basic_auth.store_user_data(user_name, password)
    if user_data is None:
        logging.error(f"Could not create user {user_name}")
        return
    print(user_data.username, user_data.salt)
    await engine.dispose()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    parser = get_parser()
    args = parser.parse_args()
    asyncio.run(main(args.username, args.password))
