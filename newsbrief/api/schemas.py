from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Body(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GenerateBriefingRequest(_Body):
    topics: list[str] = Field(default_factory=lambda: ["headline"])
    voice: Literal["male", "female"] = "female"
    duration: int = Field(default=900, gt=0, le=3600)


class RegisterRequest(_Body):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class LoginRequest(_Body):
    email: Optional[str] = None
    password: Optional[str] = None


class BriefingUpsert(_Body):
    id: Optional[str] = None
    topics: list[str] = Field(default_factory=list)
    voice: str = "female"
    duration: int = 900
    script: str = ""
    audio_url: Optional[str] = None
    is_demo: bool = False
    date: Optional[str] = None
    created_at: Optional[int] = None


class AdminUserPatch(_Body):
    is_admin: Optional[bool] = None
    is_disabled: Optional[bool] = None
    reset_password: Optional[str] = None


class PublicUser(_Body):
    id: str
    name: str
    email: str
    is_admin: bool = False
    is_disabled: bool = False
    created_at: Optional[int] = None
    last_login_at: Optional[int] = None
    last_seen_at: Optional[int] = None

    @classmethod
    def of(cls, user) -> dict:
        return cls.model_validate(user.model_dump()).model_dump(by_alias=True)
