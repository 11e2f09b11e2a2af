"""User identity handed to the sync gateway by the auth collaborator."""

from pydantic import BaseModel, Field


class UserIdentity(BaseModel):
    """The only identity fields the remote store consumes."""

    email: str = Field(..., min_length=1, description="Stable remote partition key")
    name: str | None = Field(default=None, description="Display name")

    def to_remote(self) -> dict:
        return {"email": self.email, "name": self.name}
