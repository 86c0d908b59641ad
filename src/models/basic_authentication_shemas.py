from sqlalchemy.schema import Column
from sqlalchemy.types import String, DateTime
from datetime import datetime

from src.models.schemas import Base


class UserTable(Base):
    __tablename__ = "users"
    username = Column(String, primary_key=True, index=True)
    hash_password = Column(String)
    salt = Column(String)
    created_at = Column(DateTime, default=datetime.now)
