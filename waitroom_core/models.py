"""
Waitroom Models
===============
Wire models for the waiting room API, the persisted cookie state and the
decision returned to the host.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_serializer, field_validator

from .hashing import format_iso_z, to_utc


class Action(str, Enum):
    """What the host should do with the request."""
    ALLOW = "allow"
    REDIRECT = "redirect"


class BustState(str, Enum):
    """Outcome of the checkout-bust check."""
    BUSTED = "busted"
    NOT_BUSTED = "not-busted"
    ABSENT = "absent"


class PatternType(str, Enum):
    """How a room's urlPattern is applied."""
    REGEX = "regex"
    CONTAINS = "contains"
    ALL = "all"


class RoomConfig(BaseModel):
    """A waiting room and the URLs it protects."""
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    slug: str
    domain: str = ""
    url_pattern: str = Field(default="", alias="urlPattern")
    # Older API versions send "PatternType"
    pattern_type: str = Field(
        default="",
        validation_alias=AliasChoices("patternType", "PatternType", "pattern_type"),
        serialization_alias="patternType",
    )
    checkout: Optional[str] = None
    queue_activates_on: Optional[datetime] = Field(default=None, alias="queueActivatesOn")
    # Minutes a signature stays valid, 0 when the API omits it
    timeout: int = 0
    ttl: int = 0
    safety_mode: bool = Field(default=False, alias="safetyMode")


class CookieSignature(BaseModel):
    """One generated signature for a token."""
    model_config = ConfigDict(frozen=True)

    gen: datetime
    sig: str

    @field_validator("gen")
    @classmethod
    def _validate_gen(cls, gen: datetime) -> datetime:
        # Rejects offsets that cannot be expressed in UTC
        return to_utc(gen)

    @field_serializer("gen")
    def _serialize_gen(self, gen: datetime) -> str:
        return format_iso_z(gen)


class CookieToken(BaseModel):
    """A visitor identity and its signature history."""
    model_config = ConfigDict(populate_by_name=True)

    token: str
    touched: int = 0
    touched_sig: str = Field(default="", alias="touchedSig")
    signatures: List[CookieSignature] = Field(default_factory=list)


class CookieState(BaseModel):
    """Everything persisted in the visitor's cookie."""
    model_config = ConfigDict(populate_by_name=True)

    integration: str = "python"
    tokens: List[CookieToken] = Field(default_factory=list)

    @property
    def active_token(self) -> Optional[CookieToken]:
        """The visitor's current identity, if any."""
        return self.tokens[-1] if self.tokens else None


class TokenResponse(BaseModel):
    """The ``result`` payload of a token request."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    token: str = ""
    promoted: bool = False
    slug: str = ""
    hash: Optional[str] = None
    requested: Optional[datetime] = None
    response_id: Optional[str] = Field(default=None, alias="responseID")
    status: Optional[int] = None
    url_redirect: Optional[str] = Field(default=None, alias="urlRedirect")


@dataclass
class ValidateResult:
    """Decision returned to the host pipeline."""
    action: Action
    redirect_url: Optional[str] = None
    target_url: Optional[str] = None
    set_cookie: bool = False
    cookie_value: Optional[str] = None
    bust_cookie: BustState = BustState.ABSENT
    token: Optional[str] = None
    code: Optional[str] = None
    expired: bool = False
