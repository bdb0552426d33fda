from typing import Literal

from pydantic import BaseModel, Field


class AuthRequest(BaseModel):
    idToken: str = Field(min_length=1)
    role: Literal["user", "creator"]


class UpdateProfileSchema(BaseModel):
    name: str | None = Field(default=None, max_length=255)
    image: str | None = Field(default=None, max_length=1024)
