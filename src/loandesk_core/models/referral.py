"""Referral models.

A referral is a named source credited with bringing in cases. Its attribution
key is (name, phone); phone may be the UNKNOWN_PHONE sentinel, in which case
several referrals with the same name are allowed to coexist.
"""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from pydantic import Field, field_validator

from loandesk_core.models.common import WireModel, utc_now

UNKNOWN_PHONE = "unknown"

# Placeholders the intake forms have historically sent for "no phone"
_SENTINEL_ALIASES = {"", "unknown", "n/a", "na", "none", "null", "-"}


def normalize_referral_phone(phone: Optional[str]) -> str:
    """Collapse missing/placeholder phones to the UNKNOWN_PHONE sentinel."""
    if phone is None:
        return UNKNOWN_PHONE
    phone = phone.strip()
    if phone.lower() in _SENTINEL_ALIASES:
        return UNKNOWN_PHONE
    return phone


def normalize_referral_name(name: str) -> str:
    """Collapse internal whitespace; matching is case-insensitive on top of this."""
    return " ".join(name.split())


def referral_key(name: str, phone: str) -> str:
    """Lookup key for the (name, phone) attribution pair."""
    return f"{normalize_referral_name(name).casefold()}|{normalize_referral_phone(phone)}"


class ReferralRef(WireModel):
    """Referral as captured on an intake form."""

    name: str = Field(min_length=1, max_length=200)
    phone: str = Field(default=UNKNOWN_PHONE, max_length=20)

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v):
        v = normalize_referral_name(v)
        if not v:
            raise ValueError("Referral name cannot be empty")
        return v

    @field_validator("phone", mode="before")
    @classmethod
    def phone_normalized(cls, v):
        phone = normalize_referral_phone(v)
        if phone != UNKNOWN_PHONE and not (phone.isdigit() and len(phone) == 10):
            raise ValueError("Referral phone must be 10 digits or left unspecified")
        return phone

    @property
    def has_phone(self) -> bool:
        return self.phone != UNKNOWN_PHONE


class Referral(WireModel):
    """
    Referral source record.

    `cases` is maintained by the ledger (incremented per case created with
    this referral, decremented per such case deleted, never below zero).
    `success_rate` and `commission` belong to reporting and are never touched
    by case lifecycle operations.
    """

    referral_id: str = Field(
        default_factory=lambda: f"ref_{uuid4().hex[:12]}",
        pattern=r"^ref_[a-f0-9]{12}$",
    )
    name: str = Field(min_length=1, max_length=200)
    phone: str = Field(default=UNKNOWN_PHONE, max_length=20)
    cases: int = Field(default=0, ge=0)
    success_rate: str = Field(default="0%", max_length=20)
    commission: str = Field(default="₹0", max_length=50)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def has_phone(self) -> bool:
        return self.phone != UNKNOWN_PHONE

    @property
    def key(self) -> str:
        return referral_key(self.name, self.phone)
