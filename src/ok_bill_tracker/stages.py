"""Derive a bill's coarse lifecycle stage from its Open States action history.

Open States tags each action with zero or more classification strings
(``"introduction"``, ``"referral-committee"``, ``"passage"``,
``"executive-signature"``, ...).  The classifier collapses those tags into one
of the application's stages:

    introduced → committee → committee_approved → floor_calendar →
    passed_chamber → enrolled → signed | vetoed | became_law | dead

Tags are checked in a fixed priority order, terminal outcomes first.  A bill
can pick up a committee re-referral after it was signed (technical
corrections), so order of appearance is never used.  Only the *set* of primary
tags matters, plus the count of passage actions for ``enrolled``.

When no known tag is present, the latest action's free text is scanned as a
last resort; anything else resolves to ``introduced``.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from enum import Enum
from typing import Protocol

LOGGER = logging.getLogger(__name__)


class Stage(str, Enum):
    INTRODUCED = "introduced"
    COMMITTEE = "committee"
    COMMITTEE_APPROVED = "committee_approved"
    FLOOR_CALENDAR = "floor_calendar"
    PASSED_CHAMBER = "passed_chamber"
    ENROLLED = "enrolled"
    SIGNED = "signed"
    VETOED = "vetoed"
    BECAME_LAW = "became_law"
    DEAD = "dead"


TERMINAL_STAGES: frozenset[Stage] = frozenset(
    {Stage.SIGNED, Stage.VETOED, Stage.BECAME_LAW, Stage.DEAD}
)


class ActionLike(Protocol):
    classification: list[str | None]
    description: str


# ── Tag priority table ───────────────────────────────────────────────────────
# First match wins.  Passage is handled separately (needs a count).

_PASSAGE_TAG = "passage"

_TERMINAL_TAGS: tuple[tuple[str, Stage], ...] = (
    ("executive-signature", Stage.SIGNED),
    ("executive-veto", Stage.VETOED),
    ("became-law", Stage.BECAME_LAW),
)

_TRANSIENT_TAGS: tuple[tuple[frozenset[str], Stage], ...] = (
    (frozenset({"committee-passage"}), Stage.COMMITTEE_APPROVED),
    (frozenset({"referral-committee", "committee-referral"}), Stage.COMMITTEE),
    (frozenset({"reading-3"}), Stage.FLOOR_CALENDAR),
    (frozenset({"introduction", "filing"}), Stage.INTRODUCED),
)

# Free-text fallback on the latest action, in priority order.
_TEXT_FALLBACK: tuple[tuple[str, Stage], ...] = (
    ("signed", Stage.SIGNED),
    ("veto", Stage.VETOED),
    ("enrolled", Stage.ENROLLED),
    ("passed", Stage.PASSED_CHAMBER),
    ("committee", Stage.COMMITTEE),
)


def _primary_tags(actions: Sequence[ActionLike]) -> set[str]:
    """First tag of every action, untagged actions dropped."""
    tags: set[str] = set()
    for action in actions:
        classification = action.classification or []
        if classification and classification[0]:
            tags.add(classification[0])
    return tags


def _passage_count(actions: Sequence[ActionLike]) -> int:
    return sum(1 for a in actions if _PASSAGE_TAG in (a.classification or []))


def _stage_from_text(description: str | None) -> Stage | None:
    if not description:
        return None
    text = description.lower()
    for token, stage in _TEXT_FALLBACK:
        if token in text:
            return stage
    return None


def determine_stage(actions: Sequence[ActionLike]) -> Stage:
    """Classify an ordered action list into exactly one Stage.

    Pure: the same action list always yields the same stage.  Contradictory
    terminal tags resolve by priority (signature beats veto).
    """
    if not actions:
        return Stage.INTRODUCED

    tags = _primary_tags(actions)

    for tag, stage in _TERMINAL_TAGS:
        if tag in tags:
            return stage

    if _PASSAGE_TAG in tags:
        return Stage.ENROLLED if _passage_count(actions) >= 2 else Stage.PASSED_CHAMBER

    for tag_set, stage in _TRANSIENT_TAGS:
        if tags & tag_set:
            return stage

    fallback = _stage_from_text(actions[-1].description)
    if fallback is not None:
        LOGGER.debug(
            "Stage %s inferred from action text %r", fallback.value, actions[-1].description
        )
        return fallback

    return Stage.INTRODUCED


def is_terminal(stage: Stage | str | None) -> bool:
    """True for absorbing stages (signed, vetoed, became_law, dead).

    Unknown or missing stage strings are not terminal.
    """
    try:
        return Stage(stage) in TERMINAL_STAGES
    except ValueError:
        return False
