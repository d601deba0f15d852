"""Tests for the release and site balance views."""

import pytest

from transport_tracker.models import FactoryBalance, OperationStatus, Release, TransportRecord
from transport_tracker.tracking import balances


def release(site, order, qty, goods="صويا", **kw):
    return Release(site_name=site, order_no=order, total_quantity=qty, goods_type=goods, **kw)


def trip(site, order, weight, status, goods="صويا", auto_id=None):
    return TransportRecord(
        auto_id=auto_id or f"T-{site}-{order}-{weight}",
        unloading_site=site,
        order_no=order,
        weight=weight,
        status=status,
        goods_type=goods,
    )


def test_remaining_and_factory_stock_for_simple_release():
    releases = [release("SiteA", "1", 100)]
    records = [
        trip("SiteA", "1", 40, OperationStatus.DONE),
        trip("SiteA", "1", 20, OperationStatus.IN_PROGRESS),
    ]

    [row] = balances.compute_release_balances(releases, records)
    assert row.total_released == 100
    assert row.executed == 40
    assert row.in_transit == 20
    assert row.stopped == 0
    assert row.remaining == 40
    assert row.completion_pct == pytest.approx(60.0)

    [site] = balances.compute_site_balances(releases, records, [], "صويا")
    assert site.opening == 0
    assert site.manual_consumption == 0
    assert site.factory_stock == 40


def test_trip_without_release_is_excluded():
    releases = [release("SiteA", "1", 100)]
    records = [
        trip("SiteA", "1", 10, OperationStatus.DONE),
        trip("SiteB", "9", 25, OperationStatus.DONE),
    ]

    rows = balances.compute_release_balances(releases, records)
    assert [r.key for r in rows] == [balances.BalanceKey("SiteA", "1")]
    assert rows[0].executed == 10


def test_over_delivery_clamps_remaining_at_zero():
    releases = [release("SiteA", "1", 50)]
    records = [
        trip("SiteA", "1", 40, OperationStatus.DONE, auto_id="a"),
        trip("SiteA", "1", 30, OperationStatus.STOPPED, auto_id="b"),
    ]

    [row] = balances.compute_release_balances(releases, records)
    assert row.remaining == 0
    assert row.executed + row.in_transit + row.stopped > row.total_released

    [site] = balances.compute_site_balances(releases, records, [], None)
    assert site.release_remaining == 0


def test_remaining_never_negative_across_mixed_inputs():
    releases = [release("S1", "1", 10), release("S2", "2", 5), release("S1", "3", 0)]
    records = [
        trip("S1", "1", 12, OperationStatus.DONE, auto_id="1"),
        trip("S2", "2", 1, OperationStatus.IN_PROGRESS, auto_id="2"),
        trip("S1", "3", 4, OperationStatus.STOPPED, auto_id="3"),
    ]
    for row in balances.compute_release_balances(releases, records):
        assert row.remaining >= 0


def test_aggregation_is_idempotent():
    releases = [release("SiteA", "1", 100), release("SiteB", "2", 30)]
    records = [trip("SiteA", "1", 40, OperationStatus.DONE)]

    first = balances.compute_release_balances(releases, records)
    second = balances.compute_release_balances(releases, records)
    assert first == second


def test_keys_are_trimmed_and_quantities_summed():
    releases = [
        release(" SiteA", "1 ", 60),
        release("SiteA", "1", 40),
    ]
    records = [trip("SiteA  ", " 1", 25, OperationStatus.DONE)]

    [row] = balances.compute_release_balances(releases, records)
    assert (row.site, row.order_no) == ("SiteA", "1")
    assert row.total_released == 100
    assert row.remaining == 75


def test_rows_follow_first_release_order():
    releases = [
        release("SiteB", "2", 10),
        release("SiteA", "1", 10),
        release("SiteB", "2", 5),
    ]
    rows = balances.compute_release_balances(releases, [])
    assert [r.site for r in rows] == ["SiteB", "SiteA"]


def test_only_open_hides_exhausted_releases():
    releases = [release("SiteA", "1", 10), release("SiteB", "2", 10)]
    records = [trip("SiteA", "1", 10, OperationStatus.DONE)]

    rows = balances.compute_release_balances(releases, records, only_open=True)
    assert [r.site for r in rows] == ["SiteB"]


def test_unknown_status_counts_nowhere():
    releases = [release("SiteA", "1", 10)]
    records = [trip("SiteA", "1", 4, "ملغاة")]

    [row] = balances.compute_release_balances(releases, records)
    assert (row.executed, row.in_transit, row.stopped) == (0, 0, 0)
    assert row.remaining == 10


def test_commodity_filter_is_substring_match():
    assert balances.matches_commodity("ذرة صفراء", "ذرة")
    assert not balances.matches_commodity("ذرة صفراء", "صويا")
    assert balances.matches_commodity("كسب صويا", "صويا")
    assert balances.matches_commodity("", None)


def test_release_view_filters_by_commodity():
    releases = [
        release("SiteA", "1", 100, goods="صويا"),
        release("SiteA", "1", 80, goods="ذرة صفراء"),
    ]
    records = [trip("SiteA", "1", 30, OperationStatus.DONE, goods="ذرة صفراء")]

    [soy] = balances.compute_release_balances(releases, records, "صويا")
    assert soy.total_released == 100
    assert soy.executed == 0

    [maize] = balances.compute_release_balances(releases, records, "ذرة")
    assert maize.total_released == 80
    assert maize.remaining == 50


def test_site_view_applies_manual_balances():
    releases = [release("SiteA", "1", 100)]
    records = [
        trip("SiteA", "1", 40, OperationStatus.DONE, auto_id="a"),
        trip("SiteA", "1", 20, OperationStatus.IN_PROGRESS, auto_id="b"),
        trip("SiteA", "1", 5, OperationStatus.STOPPED, auto_id="c"),
    ]
    manual = [
        FactoryBalance(site_name="SiteA", goods_type="ذرة", opening_balance=999),
        FactoryBalance(site_name="SiteA", goods_type="صويا", opening_balance=15, manual_consumption=12),
    ]

    [site] = balances.compute_site_balances(releases, records, manual, "صويا")
    assert site.opening == 15
    assert site.manual_consumption == 12
    assert site.factory_stock == 15 + 40 - 12
    assert site.release_remaining == 100 - 65


def test_site_view_includes_sites_with_only_opening_or_trips():
    releases = [release("SiteA", "1", 0)]
    records = [trip("SiteC", "9", 10, OperationStatus.DONE)]
    manual = [FactoryBalance(site_name="SiteA", goods_type="صويا", opening_balance=7)]

    sites = {s.site: s for s in balances.compute_site_balances(releases, records, manual, "صويا")}
    assert set(sites) == {"SiteA", "SiteC"}
    assert sites["SiteA"].factory_stock == 7
    assert sites["SiteC"].release_remaining == 0
    assert sites["SiteC"].factory_stock == 10


def test_site_view_omits_empty_sites():
    releases = [release("SiteA", "1", 0)]
    assert balances.compute_site_balances(releases, [], [], "صويا") == []


def test_summarize_totals_rows():
    releases = [release("SiteA", "1", 100), release("SiteB", "2", 100)]
    records = [
        trip("SiteA", "1", 50, OperationStatus.DONE),
        trip("SiteB", "2", 25, OperationStatus.IN_PROGRESS),
    ]
    summary = balances.summarize(balances.compute_release_balances(releases, records))
    assert summary["total_released"] == 200
    assert summary["remaining"] == 125
    assert summary["completion_pct"] == pytest.approx(37.5)


def test_completion_pct_with_nothing_released():
    assert balances.completion_pct(10, 0) == 0.0
