from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ChallengeCreate(_CamelModel):
    creator_id: int = Field(alias="creatorId")
    opponent_id: int = Field(alias="opponentId")
    name: str
    type: str
    target_value: Optional[float] = Field(default=None, alias="targetValue")


class ChallengeAccept(_CamelModel):
    user_id: int = Field(alias="userId")


class RegistrationComplete(_CamelModel):
    temp_user_id: str = Field(alias="tempUserId")
    name: str
    email: Optional[str] = None
