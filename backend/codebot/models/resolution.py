"""
Pydantic models describing how codes are resolved.

Models:
  ResolutionStrategy  — what to do with a message once its subject is classified
  SubjectRule         — (matcher, strategy) pair, evaluated in order
  Credentials         — account used to log in on the verification site
  ResolutionContext   — read-only configuration shared by all resolution calls
"""

from datetime import timedelta
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

from codebot.services.code_patterns import DEFAULT_LINK_MARKERS


class ResolutionStrategy(str, Enum):
    # Digit scan of the body only; never contacts a URL from the message.
    DIRECT_REGEX_ONLY = "direct"
    # Follow the verification link, logging in first when credentials exist.
    LINK_THEN_AUTHENTICATED_EXTRACTION = "link_authenticated"
    # Follow the verification link without logging in.
    LINK_THEN_REGEX_FALLBACK = "link_regex"


class SubjectRule(BaseModel):
    """
    A single subject classification rule.

    matcher is compared against the trimmed, casefolded subject as a
    substring, so "sign-in code" matches "Netflix: Your Sign-In Code".
    """

    model_config = ConfigDict(frozen=True)

    matcher: str
    strategy: ResolutionStrategy

    @field_validator("matcher")
    @classmethod
    def normalize_matcher(cls, v: str) -> str:
        v = v.strip().casefold()
        if not v:
            raise ValueError("subject matcher must not be empty")
        return v

    def matches(self, normalized_subject: str) -> bool:
        return self.matcher in normalized_subject


class Credentials(BaseModel):
    model_config = ConfigDict(frozen=True)

    email: str
    password: str

    def __repr__(self) -> str:
        return f"Credentials(email={self.email!r}, password='***')"

    __str__ = __repr__


class ResolutionContext(BaseModel):
    """Built once from configuration and shared read-only across requests."""

    model_config = ConfigDict(frozen=True)

    subject_rules: tuple[SubjectRule, ...] = ()
    lookback: timedelta = timedelta(minutes=15)
    link_markers: tuple[str, ...] = DEFAULT_LINK_MARKERS
    credentials: Optional[Credentials] = None

    def rule_for(self, subject: Optional[str]) -> Optional[SubjectRule]:
        """Return the first rule matching the subject, or None."""
        normalized = (subject or "").strip().casefold()
        for rule in self.subject_rules:
            if rule.matches(normalized):
                return rule
        return None
