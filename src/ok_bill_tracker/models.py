from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date


@dataclass
class SourceAction:
    date: date | None  # None when the source date is missing or malformed
    description: str  # e.g. "Referred to Appropriations and Budget"
    classification: list[str | None] = field(default_factory=list)  # e.g. ["referral-committee"]
    chamber: str | None = None  # organization classification: "upper" / "lower"

    @property
    def primary_tag(self) -> str | None:
        """First classification tag, or None when the action is untagged."""
        return self.classification[0] if self.classification else None


@dataclass
class SourceSponsorship:
    name: str
    classification: str  # "primary" / "cosponsor"
    entity_type: str | None = None  # "person" / "organization"
    primary: bool = False

    @property
    def is_primary(self) -> bool:
        return self.primary or self.classification == "primary"


@dataclass
class SourceBill:
    openstates_id: str  # e.g. "ocd-bill/..." -- unique key
    session_id: str  # e.g. "2026"
    identifier: str  # e.g. "HB1001"
    title: str
    description: str
    classification: str | None = None  # e.g. "bill", "resolution"
    subject: list[str] = field(default_factory=list)
    chamber: str | None = None  # originating organization classification
    first_action_date: date | None = None
    latest_action_date: date | None = None
    latest_action_description: str | None = None
    full_text_url: str | None = None
    openstates_url: str | None = None
    actions: list[SourceAction] = field(default_factory=list)
    sponsorships: list[SourceSponsorship] = field(default_factory=list)


@dataclass
class SourceLegislator:
    openstates_id: str  # e.g. "ocd-person/..." -- unique key
    name: str
    party: str | None = None
    chamber: str | None = None  # "upper" / "lower"
    district: str | None = None
    image_url: str | None = None
    email: str | None = None
    phone: str | None = None
