"""
Pydantic schema for users.
"""
from typing import Dict
from pydantic import BaseModel, Field


class User(BaseModel):
    """A user that owns sources."""
    username: str = Field(..., min_length=1, max_length=255)
    admin: bool = Field(False, description="Whether the user has administrative rights")
    properties: Dict[str, str] = Field(default_factory=dict)
