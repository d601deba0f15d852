"""Balance reconciliation between releases and transport records.

Two views are derived from the same inputs:

* release balances, one row per (site, order number) that has a release;
  trips are attributed to a release by exact match of the trimmed
  unloading site and order number, and trips without a release are ignored;
* site balances, one row per site, with the manual opening balance and
  manual consumption from factory balance records layered on top.

All functions are pure and recompute from scratch on every call.
"""

from dataclasses import asdict, dataclass
from typing import Dict, Iterable, List, NamedTuple, Optional, Sequence, TypeVar

from ..models import FactoryBalance, OperationStatus, Release, TransportRecord


class BalanceKey(NamedTuple):
    """Composite join key between a release and the trips against it."""

    site: str
    order_no: str

    @classmethod
    def for_release(cls, release: Release) -> "BalanceKey":
        return cls(release.site_key, release.order_key)

    @classmethod
    def for_record(cls, record: TransportRecord) -> "BalanceKey":
        return cls(record.site_key, record.order_key)


T = TypeVar("T", Release, TransportRecord, FactoryBalance)


def matches_commodity(goods_type: str, keyword: Optional[str]) -> bool:
    """Substring match of a commodity keyword inside a goods type."""
    if not keyword:
        return True
    return keyword in str(goods_type or "")


def filter_by_commodity(items: Iterable[T], keyword: Optional[str]) -> List[T]:
    return [item for item in items if matches_commodity(item.goods_type, keyword)]


def completion_pct(done: float, total: float) -> float:
    """Percentage of `total` covered by `done`; 0 when nothing was released."""
    return (done / total) * 100 if total > 0 else 0.0


@dataclass(frozen=True)
class StatusTotals:
    executed: float = 0.0
    in_transit: float = 0.0
    stopped: float = 0.0

    @property
    def consumed(self) -> float:
        return self.executed + self.in_transit + self.stopped


def _bucket(totals: Dict[str, float], record: TransportRecord) -> None:
    if record.status == OperationStatus.DONE:
        totals["executed"] += record.weight
    elif record.status == OperationStatus.IN_PROGRESS:
        totals["in_transit"] += record.weight
    elif record.status == OperationStatus.STOPPED:
        totals["stopped"] += record.weight


def status_totals(records: Iterable[TransportRecord]) -> StatusTotals:
    """Sum trip weights per status; unknown statuses count nowhere."""
    totals = {"executed": 0.0, "in_transit": 0.0, "stopped": 0.0}
    for record in records:
        _bucket(totals, record)
    return StatusTotals(**totals)


@dataclass(frozen=True)
class ReleaseBalance:
    site: str
    order_no: str
    goods_type: str
    date: str
    total_released: float
    executed: float
    in_transit: float
    stopped: float
    remaining: float
    completion_pct: float

    @property
    def key(self) -> BalanceKey:
        return BalanceKey(self.site, self.order_no)

    def to_dict(self) -> dict:
        return asdict(self)


def compute_release_balances(
    releases: Sequence[Release],
    records: Sequence[TransportRecord],
    keyword: Optional[str] = None,
    only_open: bool = False,
) -> List[ReleaseBalance]:
    """Per-(site, order) balances, in order of first release appearance.

    `remaining` is clamped at zero; over-delivered keys render with
    nothing remaining rather than a negative figure.
    """
    rows: Dict[BalanceKey, dict] = {}
    for release in filter_by_commodity(releases, keyword):
        key = BalanceKey.for_release(release)
        row = rows.get(key)
        if row is None:
            row = rows[key] = {
                "goods_type": release.goods_type,
                "date": release.day,
                "total_released": 0.0,
                "executed": 0.0,
                "in_transit": 0.0,
                "stopped": 0.0,
            }
        row["total_released"] += release.total_quantity

    for record in filter_by_commodity(records, keyword):
        row = rows.get(BalanceKey.for_record(record))
        if row is not None:
            _bucket(row, record)

    balances = []
    for key, row in rows.items():
        consumed = row["executed"] + row["in_transit"] + row["stopped"]
        remaining = max(0.0, row["total_released"] - consumed)
        if only_open and remaining <= 0:
            continue
        balances.append(ReleaseBalance(
            site=key.site,
            order_no=key.order_no,
            remaining=remaining,
            completion_pct=completion_pct(consumed, row["total_released"]),
            **row,
        ))
    return balances


@dataclass(frozen=True)
class SiteBalance:
    site: str
    material: str
    opening: float
    manual_consumption: float
    total_released: float
    executed: float
    in_transit: float
    stopped: float
    release_remaining: float
    factory_stock: float

    def to_dict(self) -> dict:
        return asdict(self)


def find_factory_balance(
    factory_balances: Iterable[FactoryBalance],
    site: str,
    keyword: Optional[str],
) -> Optional[FactoryBalance]:
    for balance in factory_balances:
        if balance.site_name.strip() == site and matches_commodity(balance.goods_type, keyword):
            return balance
    return None


def compute_site_balances(
    releases: Sequence[Release],
    records: Sequence[TransportRecord],
    factory_balances: Sequence[FactoryBalance],
    keyword: Optional[str] = None,
) -> List[SiteBalance]:
    """Per-site stock view with manual overrides.

    factory_stock = opening + executed - manual consumption, independent of
    what is left on the releases. Sites without any released quantity,
    opening balance or trips are omitted.
    """
    releases = filter_by_commodity(releases, keyword)
    records = filter_by_commodity(records, keyword)

    sites: Dict[str, None] = {}
    for release in releases:
        sites.setdefault(release.site_key, None)
    for record in records:
        sites.setdefault(record.site_key, None)

    balances = []
    for site in sites:
        manual = find_factory_balance(factory_balances, site, keyword)
        opening = manual.opening_balance if manual else 0.0
        spending = manual.manual_consumption if manual else 0.0

        total_released = sum(r.total_quantity for r in releases if r.site_key == site)
        totals = status_totals(r for r in records if r.site_key == site)

        if not (total_released > 0 or opening > 0 or totals.executed > 0
                or totals.in_transit > 0 or totals.stopped > 0):
            continue

        balances.append(SiteBalance(
            site=site,
            material=keyword or "",
            opening=opening,
            manual_consumption=spending,
            total_released=total_released,
            executed=totals.executed,
            in_transit=totals.in_transit,
            stopped=totals.stopped,
            release_remaining=max(0.0, total_released - totals.consumed),
            factory_stock=opening + totals.executed - spending,
        ))
    return balances


def summarize(balances: Iterable[ReleaseBalance]) -> Dict[str, float]:
    """Totals across release balances for the headline cards."""
    summary = {
        "total_released": 0.0,
        "executed": 0.0,
        "in_transit": 0.0,
        "stopped": 0.0,
        "remaining": 0.0,
    }
    for balance in balances:
        for field in summary:
            summary[field] += getattr(balance, field)
    summary["completion_pct"] = completion_pct(
        summary["executed"] + summary["in_transit"] + summary["stopped"],
        summary["total_released"],
    )
    return summary
