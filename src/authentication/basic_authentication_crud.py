import hashlib
import logging
import secrets

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.basic_authentication_models import UserModel
from src.models.basic_authentication_shemas import UserTable


def hash_password(password: str, salt: str, pepper: str) -> str:
    return hashlib.sha256((password + salt + pepper).encode()).hexdigest()


class CreateAuthentication:
    @staticmethod
    async def create_user_data(
        username: str, password: str, pepper: str, session: AsyncSession
    ) -> UserModel | None:
        """Create user data to authenticate the user

        Args:
            username (str): Login name, also used as participant id
            password (str): Plain password, stored salted and peppered
            pepper (str): Server-wide pepper from the environment

        Returns:
            UserModel | None: The stored user, None if the username is taken
        """
        salt = secrets.token_hex(8)
        new_user = UserTable(
            username=username,
            hash_password=hash_password(password, salt, pepper),
            salt=salt,
        )
        try:
            session.add(new_user)
            await session.commit()
        except IntegrityError:
            await session.rollback()
            logging.error(f"User {username} already exists")
            return None
        return UserModel.model_validate(new_user)


class ReadAuthentication:
    @staticmethod
    async def read_user_data(username: str, session: AsyncSession) -> UserModel | None:
        """Read user data to get salt and password hash

        Args:
            username (str): username of the user

        Returns:
            UserModel | None: username, password hash and salt
        """
        stmt = select(UserTable).where(UserTable.username == username)
        result = await session.execute(stmt)
        user = result.scalars().first()
        if user is None:
            logging.info(f"User {username} not found")
            return None
        return UserModel.model_validate(user)
