"""Record listings, headline statistics and the periodic report."""

from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List, Optional, Sequence

from ..models import OperationStatus, Release, TransportRecord
from .balances import completion_pct, compute_release_balances, status_totals, summarize


def parse_day(value: str) -> Optional[date]:
    """Parse the date part of an ISO-ish string; None when unparsable."""
    text = str(value or "").strip()[:10]
    for fmt in ("%Y-%m-%d", "%d/%m/%Y"):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def format_day(value: str) -> str:
    """Render a stored date as DD/MM/YYYY, keeping unparsable text as-is."""
    if not value:
        return "--"
    parsed = parse_day(value)
    return parsed.strftime("%d/%m/%Y") if parsed else value


def search_records(
    records: Sequence[TransportRecord],
    search: str = "",
    status: Optional[str] = None,
    site: Optional[str] = None,
) -> List[TransportRecord]:
    """Filter records and order them newest first.

    The search term matches car number, driver name, order number or
    waybill as a substring; `status` and `site` are exact filters.
    """
    term = (search or "").strip()
    matched = []
    for record in records:
        if term and not any(
            term in value
            for value in (record.car_number, record.driver_name, record.order_no, record.waybill_no)
        ):
            continue
        if status and record.status != status:
            continue
        if site and record.site_key != site.strip():
            continue
        matched.append(record)

    return sorted(
        matched,
        key=lambda r: parse_day(r.date) or date.min,
        reverse=True,
    )


def unique_sites(records: Sequence[TransportRecord]) -> List[str]:
    sites = dict.fromkeys(r.site_key for r in records)
    return [s for s in sites if s]


def record_stats(records: Sequence[TransportRecord]) -> Dict[str, float]:
    """Totals shown above the records table."""
    return {
        "total_weight": status_totals(records).executed,
        "total_trips": len(records),
        "in_progress": sum(1 for r in records if r.status == OperationStatus.IN_PROGRESS),
        "stopped": sum(1 for r in records if r.status == OperationStatus.STOPPED),
    }


def dashboard_stats(
    releases: Sequence[Release], records: Sequence[TransportRecord]
) -> Dict[str, object]:
    """Headline cards: trips, executed weight, transit, stopped, remaining."""
    totals = status_totals(records)
    balances = summarize(compute_release_balances(releases, records))
    return {
        "total_trips": len(records),
        "total_weight": totals.executed,
        "in_transit": totals.in_transit,
        "stopped": totals.stopped,
        "remaining": balances["remaining"],
        "car_stats": dict(Counter(r.car_number for r in records if r.car_number)),
        "driver_stats": dict(Counter(r.driver_name for r in records if r.driver_name)),
    }


@dataclass
class SiteReport:
    released: float = 0.0
    added: float = 0.0
    stopped: float = 0.0
    trips: int = 0

    @property
    def completion_pct(self) -> float:
        return completion_pct(self.added, self.released)


@dataclass
class PeriodicReport:
    date_from: date
    date_to: date
    total_released: float = 0.0
    total_added: float = 0.0
    total_stopped: float = 0.0
    total_trips: int = 0
    sites: Dict[str, SiteReport] = field(default_factory=dict)
    records: List[TransportRecord] = field(default_factory=list)

    def site(self, name: str) -> SiteReport:
        if name not in self.sites:
            self.sites[name] = SiteReport()
        return self.sites[name]

    def to_dict(self) -> dict:
        return {
            "date_from": self.date_from.isoformat(),
            "date_to": self.date_to.isoformat(),
            "total_released": self.total_released,
            "total_added": self.total_added,
            "total_stopped": self.total_stopped,
            "total_trips": self.total_trips,
            "sites": {
                name: {
                    "released": s.released,
                    "added": s.added,
                    "stopped": s.stopped,
                    "trips": s.trips,
                    "completion_pct": round(s.completion_pct, 2),
                }
                for name, s in self.sites.items()
            },
        }


def default_period(today: Optional[date] = None) -> tuple:
    """First day of the current month through today."""
    today = today or date.today()
    return today.replace(day=1), today


def build_periodic_report(
    releases: Sequence[Release],
    records: Sequence[TransportRecord],
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> PeriodicReport:
    """Aggregate releases and trips dated inside [date_from, date_to]."""
    if date_from is None or date_to is None:
        default_from, default_to = default_period()
        date_from = date_from or default_from
        date_to = date_to or default_to

    def in_period(value: str) -> bool:
        day = parse_day(value)
        return day is not None and date_from <= day <= date_to

    report = PeriodicReport(date_from=date_from, date_to=date_to)

    for release in releases:
        if not in_period(release.date):
            continue
        report.total_released += release.total_quantity
        report.site(release.site_key).released += release.total_quantity

    for record in records:
        if not in_period(record.date):
            continue
        report.records.append(record)
        report.total_trips += 1
        site = report.site(record.site_key)
        site.trips += 1
        if record.status == OperationStatus.DONE:
            report.total_added += record.weight
            site.added += record.weight
        elif record.status == OperationStatus.STOPPED:
            report.total_stopped += record.weight
            site.stopped += record.weight

    return report
