"""Open States v3 client: paginated people and bill listings for one jurisdiction.

Pages are fetched strictly one at a time with a fixed delay between requests.
Iteration stops at the first empty page, when the source reports no further
pages, or at a hard page cap, whichever comes first.  A response without
pagination metadata is treated as the last page.

Raw JSON is parsed into the ``Source*`` dataclasses from :mod:`models`.
Missing optional fields become ``None``; malformed dates become ``None``.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from . import config
from .models import SourceAction, SourceBill, SourceLegislator, SourceSponsorship

LOGGER = logging.getLogger(__name__)

BILL_INCLUDES: tuple[str, ...] = ("actions", "sponsorships", "versions")


class SourceError(RuntimeError):
    """A page fetch failed (network, timeout, non-2xx, or unreadable body)."""

    def __init__(self, endpoint: str, page: int, message: str) -> None:
        super().__init__(f"GET {endpoint} page {page} failed: {message}")
        self.endpoint = endpoint
        self.page = page


# ── Field helpers ────────────────────────────────────────────────────────────


def parse_date(value: Any) -> date | None:
    """Parse ``YYYY-MM-DD`` or an ISO timestamp; anything else is ``None``."""
    if not value or not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def _last_page(pagination: dict | None) -> int | None:
    """Last page number reported by the source, or None if it reports none."""
    if not pagination:
        return None
    for key in ("max_page", "total_pages"):
        value = pagination.get(key)
        if value is not None:
            try:
                return int(value)
            except (TypeError, ValueError):
                return None
    return None


def _session_identifier(raw: Any) -> str:
    if isinstance(raw, dict):
        raw = raw.get("identifier")
    return str(raw) if raw else config.DEFAULT_SESSION


def _first_version_url(versions: list[dict] | None) -> str | None:
    for version in versions or []:
        if version.get("url"):
            return version["url"]
        for link in version.get("links") or []:
            if link.get("url"):
                return link["url"]
    return None


def _party_name(person: dict) -> str | None:
    party = person.get("party")
    if isinstance(party, list):
        party = party[0].get("name") if party and isinstance(party[0], dict) else None
    return party or person.get("current_party") or None


def _office_phone(person: dict) -> str | None:
    if person.get("phone"):
        return person["phone"]
    for office in person.get("offices") or []:
        if office.get("voice"):
            return office["voice"]
    return None


# ── Record parsing ───────────────────────────────────────────────────────────


def action_from_json(d: dict) -> SourceAction:
    organization = d.get("organization") or {}
    return SourceAction(
        date=parse_date(d.get("date")),
        description=d.get("description") or "",
        classification=list(d.get("classification") or []),
        chamber=organization.get("classification"),
    )


def sponsorship_from_json(d: dict) -> SourceSponsorship:
    return SourceSponsorship(
        name=(d.get("name") or "").strip(),
        classification=d.get("classification") or "",
        entity_type=d.get("entity_type"),
        primary=bool(d.get("primary")),
    )


def bill_from_json(d: dict) -> SourceBill:
    session_id = _session_identifier(d.get("session"))
    identifier = d.get("identifier", "")
    classification = d.get("classification")
    if isinstance(classification, list):
        classification = classification[0] if classification else None
    title = d.get("title") or ""
    openstates_url = d.get("openstates_url") or (
        f"https://openstates.org/{config.JURISDICTION}/bills/{session_id}/{identifier}"
    )
    return SourceBill(
        openstates_id=d["id"],
        session_id=session_id,
        identifier=identifier,
        title=title,
        description=d.get("description") or title,
        classification=classification,
        subject=list(d.get("subject") or []),
        chamber=(d.get("from_organization") or {}).get("classification"),
        first_action_date=parse_date(d.get("first_action_date")),
        latest_action_date=parse_date(d.get("latest_action_date")),
        latest_action_description=d.get("latest_action_description"),
        full_text_url=_first_version_url(d.get("versions")),
        openstates_url=openstates_url,
        actions=[action_from_json(a) for a in d.get("actions") or []],
        sponsorships=[sponsorship_from_json(s) for s in d.get("sponsorships") or []],
    )


def legislator_from_json(d: dict) -> SourceLegislator:
    role = d.get("current_role") or {}
    district = role.get("district")
    return SourceLegislator(
        openstates_id=d["id"],
        name=(d.get("name") or "").strip(),
        party=_party_name(d),
        chamber=role.get("org_classification") or role.get("chamber"),
        district=str(district) if district is not None else None,
        image_url=d.get("image") or None,
        email=d.get("email") or None,
        phone=_office_phone(d),
    )


# ── Client ───────────────────────────────────────────────────────────────────


@dataclass
class OpenStatesClient:
    api_key: str = ""
    base_url: str = "https://v3.openstates.org"
    jurisdiction: str = "ok"
    session_filter: str = ""
    per_page: int = 20
    legislator_page_cap: int = 10
    bill_page_cap: int = 20
    page_delay: float = 0.2
    timeout_seconds: int = 30
    session: requests.Session = field(default_factory=requests.Session, repr=False)

    def __post_init__(self) -> None:
        """Back off on rate limiting; timeouts and connection errors are not retried."""
        retry_strategy = Retry(
            total=3,
            connect=0,
            read=0,
            backoff_factor=1.0,
            status_forcelist=[429, 500, 502, 503, 504],
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy, pool_connections=1, pool_maxsize=1)
        self.session.mount("https://", adapter)
        self.session.mount("http://", adapter)
        if self.api_key:
            self.session.headers["X-API-KEY"] = self.api_key

    @classmethod
    def from_config(cls) -> OpenStatesClient:
        return cls(
            api_key=config.OPENSTATES_API_KEY,
            base_url=config.OPENSTATES_BASE_URL,
            jurisdiction=config.JURISDICTION,
            session_filter=config.SESSION,
            per_page=config.PER_PAGE,
            legislator_page_cap=config.LEGISLATOR_PAGE_CAP,
            bill_page_cap=config.BILL_PAGE_CAP,
            page_delay=config.PAGE_DELAY,
            timeout_seconds=config.REQUEST_TIMEOUT,
        )

    def close(self) -> None:
        self.session.close()

    # ── HTTP ──────────────────────────────────────────────────────────────

    def fetch_page(self, endpoint: str, page: int, params: dict | None = None) -> dict:
        """GET one page; any transport or HTTP failure raises SourceError."""
        query: dict[str, Any] = {
            "jurisdiction": self.jurisdiction,
            "page": page,
            "per_page": self.per_page,
        }
        query.update(params or {})
        url = f"{self.base_url}{endpoint}"
        try:
            resp = self.session.get(url, params=query, timeout=self.timeout_seconds)
            resp.raise_for_status()
            return resp.json()
        except requests.RequestException as exc:
            raise SourceError(endpoint, page, str(exc)) from exc
        except ValueError as exc:
            raise SourceError(endpoint, page, f"invalid JSON: {exc}") from exc

    def iter_pages(
        self,
        endpoint: str,
        max_pages: int,
        params: dict | None = None,
    ) -> Iterator[list[dict]]:
        """Yield the ``results`` list of each page until the source runs dry."""
        page = 1
        while page <= max_pages:
            payload = self.fetch_page(endpoint, page, params)
            results = payload.get("results") or []
            if not results:
                LOGGER.info("%s page %d is empty; stopping.", endpoint, page)
                break
            yield results

            last_page = _last_page(payload.get("pagination"))
            if last_page is None or page >= last_page:
                break
            page += 1
            if page <= max_pages:
                time.sleep(self.page_delay)
        else:
            LOGGER.warning("%s stopped at the page cap (%d).", endpoint, max_pages)

    # ── public API ───────────────────────────────────────────────────────

    def iter_legislators(self) -> Iterator[list[SourceLegislator]]:
        for results in self.iter_pages("/people", self.legislator_page_cap):
            yield [legislator_from_json(r) for r in results]

    def iter_bills(self) -> Iterator[list[SourceBill]]:
        params: dict[str, Any] = {"include": list(BILL_INCLUDES)}
        if self.session_filter:
            params["session"] = self.session_filter
        for results in self.iter_pages("/bills", self.bill_page_cap, params):
            yield [bill_from_json(r) for r in results]
