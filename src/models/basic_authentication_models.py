from pydantic import BaseModel


class UserModel(BaseModel):
    """Authenticated user. The username doubles as the opaque participant id."""
    username: str
    hash_password: str
    salt: str

    class Config:
        from_attributes = True

    @property
    def participant_id(self) -> str:
        return self.username
