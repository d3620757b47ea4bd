"""
Request bodies for the club membership backend.

Each stored collection mirrors one of these payloads: ``feedback`` holds
FeedbackSubmission documents, ``user`` holds RegisterRequest documents plus
meeting fields, ``deselected`` holds archived users with a reason, and
``card`` holds seeded Card documents.

Fields are optional on purpose: submissions are stored as sent. Text fields
accept any scalar and keep it as a string, so a numeric rating or uid is
stored as text instead of being rejected.
"""

from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

_TRUE_STRINGS = ("true", "1", "yes", "on")


def as_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    return str(value)


def as_text_list(value: Any) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        value = [value]
    return [as_text(v) for v in value if v is not None]


def as_flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return bool(value)


class FeedbackSubmission(BaseModel):
    ratings: List[str] = Field(default_factory=list)
    coordinatorName: Optional[str] = None
    coordinatorRating: Optional[str] = None
    teamName: Optional[str] = None
    email: Optional[str] = None

    @field_validator("ratings", mode="before")
    @classmethod
    def _ratings_as_text(cls, v):
        return as_text_list(v)

    @field_validator("coordinatorName", "coordinatorRating", "teamName", "email", mode="before")
    @classmethod
    def _text(cls, v):
        return as_text(v)


class RegisterRequest(BaseModel):
    name: Optional[str] = None
    uid: Optional[str] = None
    department: Optional[str] = None
    occupation: Optional[str] = None
    email: Optional[str] = None
    scheduleMeeting: bool = False
    selected: bool = False

    @field_validator("name", "uid", "department", "occupation", "email", mode="before")
    @classmethod
    def _text(cls, v):
        return as_text(v)

    @field_validator("scheduleMeeting", "selected", mode="before")
    @classmethod
    def _flag(cls, v):
        return as_flag(v)


class ScheduleMeetingRequest(BaseModel):
    userId: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None

    @field_validator("userId", "date", "time", mode="before")
    @classmethod
    def _text(cls, v):
        return as_text(v)


class SelectRequest(BaseModel):
    selected: Any = None


class DeselectRequest(BaseModel):
    reason: Optional[str] = None

    @field_validator("reason", mode="before")
    @classmethod
    def _text(cls, v):
        return as_text(v)


class Card(BaseModel):
    id: str = Field(..., description="Card id (string)")
    title: str
    content: str
    image: Optional[str] = None
    alt: Optional[str] = None
    likes: int = Field(default=0, ge=0)
