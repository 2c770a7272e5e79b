"""Record builders and in-memory fakes shared by the test modules."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import date

import requests

from ok_bill_tracker.models import (
    SourceAction,
    SourceBill,
    SourceLegislator,
    SourceSponsorship,
)

# ── Record builders ──────────────────────────────────────────────────────────


def action(
    tag: str | None = None, description: str = "", *, on: str = "2026-02-02"
) -> SourceAction:
    return SourceAction(
        date=date.fromisoformat(on),
        description=description or (tag or "Action"),
        classification=[tag] if tag else [],
        chamber="lower",
    )


def make_bill(
    openstates_id: str = "ocd-bill/ok-hb1001",
    *,
    identifier: str = "HB1001",
    actions: list[SourceAction] | None = None,
    sponsorships: list[SourceSponsorship] | None = None,
) -> SourceBill:
    actions = list(actions or [])
    latest = actions[-1] if actions else None
    return SourceBill(
        openstates_id=openstates_id,
        session_id="2026",
        identifier=identifier,
        title=f"{identifier} Schools; modifying school calendar requirements",
        description=f"{identifier} Schools; modifying school calendar requirements",
        classification="bill",
        subject=["Education"],
        chamber="lower",
        first_action_date=actions[0].date if actions else None,
        latest_action_date=latest.date if latest else None,
        latest_action_description=latest.description if latest else None,
        full_text_url="https://example.test/HB1001_int.pdf",
        openstates_url=f"https://openstates.org/ok/bills/2026/{identifier}",
        actions=actions,
        sponsorships=list(sponsorships or []),
    )


def make_legislator(
    openstates_id: str = "ocd-person/ok-1",
    name: str = "Jane Doe",
    party: str | None = "Republican",
    **kwargs,
) -> SourceLegislator:
    kwargs.setdefault("chamber", "lower")
    kwargs.setdefault("district", "12")
    return SourceLegislator(openstates_id=openstates_id, name=name, party=party, **kwargs)


# ── Fakes ────────────────────────────────────────────────────────────────────


class FakeSource:
    """In-memory stand-in for OpenStatesClient.

    ``fail_legislators`` / ``fail_bills`` raise after yielding the given pages.
    """

    def __init__(
        self,
        legislator_pages: list[list[SourceLegislator]] | None = None,
        bill_pages: list[list[SourceBill]] | None = None,
        *,
        fail_legislators: Exception | None = None,
        fail_bills: Exception | None = None,
    ) -> None:
        self.legislator_pages = legislator_pages or []
        self.bill_pages = bill_pages or []
        self.fail_legislators = fail_legislators
        self.fail_bills = fail_bills
        self.bill_calls = 0

    def iter_legislators(self) -> Iterator[list[SourceLegislator]]:
        yield from self.legislator_pages
        if self.fail_legislators is not None:
            raise self.fail_legislators

    def iter_bills(self) -> Iterator[list[SourceBill]]:
        self.bill_calls += 1
        yield from self.bill_pages
        if self.fail_bills is not None:
            raise self.fail_bills


class FakeResponse:
    def __init__(self, payload: object = None, status_code: int = 200) -> None:
        self._payload = payload
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=None)

    def json(self) -> object:
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class FakeHTTPSession:
    """Replays queued responses (or raises queued exceptions) for ``get``."""

    def __init__(self, responses: list[FakeResponse | Exception] | None = None) -> None:
        self.responses = list(responses or [])
        self.headers: dict[str, str] = {}
        self.calls: list[tuple[str, dict]] = []
        self.closed = False

    def mount(self, prefix: str, adapter: object) -> None:
        pass

    def get(self, url: str, params: dict | None = None, timeout: float | None = None):
        self.calls.append((url, dict(params or {})))
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def close(self) -> None:
        self.closed = True


def page(results: list[dict], page_no: int = 1, max_page: int | None = 1) -> FakeResponse:
    payload: dict = {"results": results}
    if max_page is not None:
        payload["pagination"] = {"page": page_no, "max_page": max_page, "per_page": 20}
    return FakeResponse(payload)

