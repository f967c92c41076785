"""
Resolution outcomes.

ExtractionOutcome is a tagged union over Code, PendingUrl and NotFound.
Exactly one variant is produced per resolution attempt. PendingUrl never leaves
the code resolver: resolve_final only returns Code or NotFound.
"""

from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, field_validator

from codebot.services.code_patterns import is_valid_code


class Code(BaseModel):
    """A resolved one-time code, always 4-8 ASCII digits kept as a string."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["code"] = "code"
    value: str

    @field_validator("value")
    @classmethod
    def check_digits(cls, v: str) -> str:
        if not is_valid_code(v):
            raise ValueError(f"code must be 4-8 ASCII digits, got {v!r}")
        return v


class PendingUrl(BaseModel):
    """The code lives behind a verification link that still has to be visited."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["pending_url"] = "pending_url"
    url: str


class NotFound(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["not_found"] = "not_found"


ExtractionOutcome = Union[Code, PendingUrl, NotFound]
FinalOutcome = Union[Code, NotFound]
