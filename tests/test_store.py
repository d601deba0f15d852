"""Tests for the dashboard store: session, views and optimistic mutations."""

import pytest
import requests

from transport_tracker.models import MasterData, Material, OperationStatus
from transport_tracker.tracking import (
    ConnectionStatus,
    DashboardStore,
    FormValidationError,
    NotFoundError,
    PermissionDeniedError,
)
from transport_tracker.tracking.forms import Distribution, RecordForm, ReleaseForm
from transport_tracker.tracking.store import SYNC_FAILED


def test_starts_from_cache_before_any_fetch(remote):
    remote.fetch_all()
    store = DashboardStore(remote)
    try:
        assert len(store.records) == 4
        assert store.current_user is None
        assert store.material is None
    finally:
        store.close()


def test_refresh_marks_online(store):
    assert store.connection_status == ConnectionStatus.ONLINE
    assert store.last_synced_at is not None


def test_degraded_refresh_marks_offline(store, session):
    session.responses = [requests.ConnectionError("down")]
    result = store.refresh()

    assert result.degraded
    assert store.connection_status == ConnectionStatus.OFFLINE
    assert len(store.records) == 4
    assert SYNC_FAILED in [n.message for n in store.drain_notifications()]


def test_wrong_pin_is_rejected(store):
    with pytest.raises(PermissionDeniedError):
        store.login("0000")
    assert store.current_user is None
    assert store.drain_notifications()[-1].level == "error"


def test_single_material_user_gets_it_preselected(store, remote):
    user = store.login("2222")

    assert user.name == "محرر الصويا"
    assert store.material is Material.SOY

    restored = DashboardStore(remote)
    try:
        assert restored.current_user == user
        assert restored.material is Material.SOY
    finally:
        restored.close()


def test_admin_must_pick_material(store):
    store.login("1111")
    assert store.material is None
    assert store.release_balances() == []

    store.select_material(Material.MAIZE)
    [row] = store.release_balances()
    assert row.site == "SiteB"
    assert row.stopped == 30
    assert row.remaining == 20


def test_material_outside_scope_is_refused(store):
    store.login("3333")
    assert store.material is Material.MAIZE
    with pytest.raises(PermissionDeniedError):
        store.select_material(Material.SOY)


def test_logout_clears_session(store, cache):
    store.login("2222")
    store.logout()

    assert store.current_user is None
    assert store.material is None
    assert cache.load_user() is None


def test_views_are_scoped_to_material(store):
    store.login("2222")

    assert {r.auto_id for r in store.filtered_records()} == {
        "SOY-1001-0001", "SOY-1002-0002", "SOY-1004-0004"
    }
    [row] = store.release_balances()
    assert (row.site, row.remaining) == ("SiteA", 40)

    sites = {s.site: s for s in store.site_balances()}
    assert sites["SiteA"].factory_stock == 5 + 40 - 2
    assert sites["SiteC"].executed == 10

    stats = store.stats()
    assert stats["total_trips"] == 3
    assert stats["total_weight"] == 50
    assert stats["in_transit"] == 20


def test_viewer_cannot_edit(store):
    store.login("3333")
    form = RecordForm(material=Material.MAIZE, unloading_site="SiteB", order_no="2", weight=5)
    with pytest.raises(PermissionDeniedError):
        store.add_record(form)
    with pytest.raises(PermissionDeniedError):
        store.change_status("TR-1003-0003", OperationStatus.DONE)


def test_add_record_is_optimistic_then_posted(store, session):
    store.login("2222")
    form = RecordForm(material=Material.SOY, unloading_site="SiteA", order_no="1", weight=15)

    record = store.add_record(form)

    assert store.records[0] is record
    assert record.auto_id.startswith("SOY-")
    assert store.release_balances()[0].remaining == 25

    store.wait_for_pending(timeout=5)
    assert session.actions() == ["addRecord"]
    assert session.posts[0]["body"]["record"]["autoId"] == record.auto_id


def test_add_record_over_balance_is_blocked(store, session):
    store.login("2222")
    form = RecordForm(material=Material.SOY, unloading_site="SiteA", order_no="1", weight=45)

    with pytest.raises(FormValidationError):
        store.add_record(form)

    store.wait_for_pending(timeout=5)
    assert len(store.records) == 4
    assert session.posts == []


def test_update_record_replaces_in_place(store, session):
    store.login("2222")
    existing = store.find_record("SOY-1002-0002")
    form = RecordForm.from_record(existing, Material.SOY)
    form.weight = 50

    updated = store.update_record("SOY-1002-0002", form)

    assert store.find_record("SOY-1002-0002").weight == 50
    assert updated.auto_id == existing.auto_id
    store.wait_for_pending(timeout=5)
    assert session.actions() == ["updateRecord"]


def test_change_status_and_delete(store, session):
    store.login("2222")

    record = store.change_status("SOY-1002-0002", OperationStatus.DONE)
    assert record.status == OperationStatus.DONE
    assert store.release_balances()[0].executed == 60

    store.delete_record("SOY-1002-0002")
    with pytest.raises(NotFoundError):
        store.find_record("SOY-1002-0002")

    store.wait_for_pending(timeout=5)
    assert session.actions() == ["updateRecord", "deleteRecord"]
    assert session.posts[1]["body"]["goodsType"] == "صويا"


def test_change_status_with_explicit_actor(store):
    admin = store.master_data.find_user("1111")
    record = store.change_status("TR-1003-0003", OperationStatus.IN_PROGRESS, actor=admin)
    assert record.status == OperationStatus.IN_PROGRESS


def test_failed_post_keeps_local_change_and_goes_offline(store, session):
    store.login("2222")
    store.drain_notifications()
    session.post_error = requests.ConnectionError("offline")

    store.change_status("SOY-1002-0002", OperationStatus.STOPPED)
    store.wait_for_pending(timeout=5)

    assert store.find_record("SOY-1002-0002").status == OperationStatus.STOPPED
    assert store.connection_status == ConnectionStatus.OFFLINE
    assert any(n.level == "warning" for n in store.drain_notifications())


def test_next_fetch_overwrites_optimistic_state(store):
    store.login("2222")
    store.delete_record("SOY-1001-0001")
    assert len(store.records) == 3

    store.wait_for_pending(timeout=5)
    store.refresh()
    assert store.find_record("SOY-1001-0001").weight == 40


def test_add_releases_in_bulk(store, session):
    store.login("1111")
    store.select_material(Material.SOY)
    form = ReleaseForm(
        release_no="300",
        order_no="5",
        date="2025-02-01",
        distributions=[Distribution("SiteA", 30), Distribution("SiteD", 10)],
    )

    added = store.add_releases(form)

    assert [r.goods_type for r in added] == ["صويا", "صويا"]
    assert {(r.site, r.order_no) for r in store.release_balances()} >= {("SiteA", "5"), ("SiteD", "5")}
    store.wait_for_pending(timeout=5)
    body = session.posts[0]["body"]
    assert body["action"] == "addReleasesBulk"
    assert len(body["distributions"]) == 2


def test_update_and_delete_release(store, session):
    store.login("2222")
    form = ReleaseForm.from_release(store.find_release("R1"))
    form.distributions[0].quantity = 150

    updated = store.update_release("R1", form)
    assert updated.id == "R1"
    assert store.release_balances()[0].remaining == 90

    store.delete_release("R1")
    assert store.release_balances() == []

    store.wait_for_pending(timeout=5)
    assert session.actions() == ["updateRelease", "deleteRelease"]


def test_update_factory_balance_upserts(store, session):
    store.login("2222")

    balance = store.update_factory_balance("SiteA", 8, 3)
    assert balance.id == "F1"
    assert len(store.factory_balances) == 1

    created = store.update_factory_balance("SiteC", 1, 0)
    assert created.id is None
    assert created.goods_type == "صويا"
    assert len(store.factory_balances) == 2

    sites = {s.site: s for s in store.site_balances()}
    assert sites["SiteA"].factory_stock == 8 + 40 - 3

    store.wait_for_pending(timeout=5)
    assert session.actions() == ["updateFactoryBalance", "updateFactoryBalance"]


def test_master_data_is_admin_only(store, session):
    store.login("2222")
    with pytest.raises(PermissionDeniedError):
        store.save_master_data(MasterData())

    store.logout()
    store.login("1111")
    data = store.master_data.model_copy(update={"drivers": ["سامي"]})
    store.save_master_data(data)

    assert store.master_data.drivers == ["سامي"]
    store.wait_for_pending(timeout=5)
    assert session.posts[0]["body"]["data"]["drivers"] == ["سامي"]


def test_periodic_report_uses_material(store):
    from datetime import date

    store.login("2222")
    report = store.periodic_report(date(2025, 1, 1), date(2025, 1, 31))

    assert report.total_released == 100
    assert report.total_added == 50
    assert report.total_trips == 3


def test_factory_balance_matches_existing_row_by_commodity(store):
    store.login("2222")

    balance = store.update_factory_balance("SiteA", 9, 1, goods_type="كسب صويا")

    assert balance.id == "F1"
    assert balance.goods_type == "صويا"
    assert len(store.factory_balances) == 1


def test_factory_balance_full_goods_type_is_not_duplicated(store):
    store.login("1111")
    store.select_material(Material.MAIZE)

    created = store.update_factory_balance("SiteB", 4, 0, goods_type="ذرة صفراء")
    assert created.goods_type == "ذرة صفراء"

    store.update_factory_balance("SiteB", 6, 2, goods_type="ذرة صفراء")
    rows = [b for b in store.factory_balances if b.site_name == "SiteB"]
    assert len(rows) == 1
    assert rows[0].opening_balance == 6
