from datetime import date, datetime, timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from vin_app.db import VinRecord
from vin_app.exceptions import StorageError, VinConflictError, VinNotFoundError, VinValidationError
from vin_app.store import VinStore
from vin_app.validation import utcnow

VIN_A = "1HGCM82633A123456"
VIN_B = "WVWZZZ1JZXW000001"
VIN_C = "5YJ3E1EA7KF317000"


def test_create_stores_uppercased_code(store):
    record = store.create("1hgcm82633a123456", user_agent="Mozilla/5.0", ip_address="10.0.0.1")

    assert record.id is not None
    assert record.code == VIN_A
    assert record.user_agent == "Mozilla/5.0"
    assert record.ip_address == "10.0.0.1"
    assert store.get(record.id).code == VIN_A


def test_create_defaults_recorded_at_to_now(store):
    before = utcnow()
    record = store.create(VIN_A)

    assert before <= record.date_created <= utcnow()
    assert record.created_at is not None


def test_create_keeps_supplied_recorded_at(store):
    recorded_at = datetime(2023, 2, 14, 8, 45, 0)
    record = store.create(VIN_A, recorded_at=recorded_at)

    assert record.date_created == recorded_at


@pytest.mark.parametrize("code", [None, "", "TOO-SHORT", "1HGCM82633I123456"])
def test_create_rejects_invalid_codes(store, code):
    with pytest.raises(VinValidationError):
        store.create(code)

    assert store.count() == 0


def test_create_duplicate_raises_conflict(store):
    store.create(VIN_A)

    with pytest.raises(VinConflictError):
        store.create(VIN_A.lower())

    assert store.count() == 1


def test_store_usable_after_conflict(store):
    store.create(VIN_A)
    with pytest.raises(VinConflictError):
        store.create(VIN_A)

    record = store.create(VIN_B)

    assert record.code == VIN_B
    assert store.count() == 2


def test_delete_returns_prior_state(store):
    record = store.create(VIN_A)
    record_id = record.id

    deleted = store.delete(record_id)

    assert deleted.id == record_id
    assert deleted.code == VIN_A
    assert store.list_all() == []


def test_delete_unknown_id_raises_not_found(store):
    store.create(VIN_A)

    with pytest.raises(VinNotFoundError):
        store.delete(9999)

    assert store.count() == 1


def test_list_all_orders_newest_first(store, db_session):
    first = store.create(VIN_A)
    second = store.create(VIN_B)
    first.created_at = datetime(2024, 1, 1, 9, 0, 0)
    second.created_at = datetime(2024, 1, 2, 9, 0, 0)
    db_session.commit()

    assert [record.code for record in store.list_all()] == [VIN_B, VIN_A]


def test_search_by_code_is_case_insensitive(store):
    store.create(VIN_A)
    store.create(VIN_B)

    results = store.search(query="1hg")

    assert [record.code for record in results] == [VIN_A]


def test_search_query_matches_substrings_only(store):
    store.create(VIN_A)
    store.create(VIN_B)

    assert store.search(query="ZZZ1J")[0].code == VIN_B
    assert store.search(query="NOPE") == []


def test_search_by_inclusive_date_range(store):
    store.create(VIN_A, recorded_at=datetime(2024, 3, 1, 23, 59, 59))
    store.create(VIN_B, recorded_at=datetime(2024, 3, 5, 0, 0, 0))
    store.create(VIN_C, recorded_at=datetime(2024, 3, 10, 12, 0, 0))

    results = store.search(date_from=date(2024, 3, 1), date_to=date(2024, 3, 5))

    assert sorted(record.code for record in results) == sorted([VIN_A, VIN_B])


def test_search_filters_combine(store):
    store.create(VIN_A, recorded_at=datetime(2024, 3, 1, 10, 0, 0))
    store.create(VIN_B, recorded_at=datetime(2024, 3, 1, 11, 0, 0))

    results = store.search(query="WVW", date_from=date(2024, 3, 1), date_to=date(2024, 3, 1))

    assert [record.code for record in results] == [VIN_B]
    assert store.search(query="WVW", date_from=date(2024, 3, 2)) == []


def test_search_without_filters_returns_everything(store):
    store.create(VIN_A)
    store.create(VIN_B)

    assert len(store.search()) == 2


def test_stats_buckets_by_insertion_time(store, db_session):
    now = datetime(2026, 10, 19, 15, 0, 0)
    created = {
        VIN_A: now - timedelta(hours=2),  # today
        VIN_B: now - timedelta(days=3),  # this week and month
        VIN_C: now - timedelta(days=40),  # neither
    }
    for code, created_at in created.items():
        store.create(code).created_at = created_at
    db_session.commit()

    assert store.stats(now=now) == {"total": 3, "today": 1, "thisWeek": 2, "thisMonth": 2}


def test_stats_month_ignores_previous_year(store, db_session):
    now = datetime(2026, 12, 31, 10, 0, 0)
    store.create(VIN_A).created_at = datetime(2025, 12, 15, 10, 0, 0)
    store.create(VIN_B).created_at = datetime(2026, 12, 1, 0, 0, 0)
    db_session.commit()

    stats = store.stats(now=now)

    assert stats["total"] == 2
    assert stats["thisMonth"] == 1
    assert stats["today"] == 0


def test_stats_empty_store(store):
    assert store.stats() == {"total": 0, "today": 0, "thisWeek": 0, "thisMonth": 0}


def test_get_unknown_id_with_mocked_session(mock_db_session):
    with pytest.raises(VinNotFoundError):
        VinStore(mock_db_session).get(1)


def test_database_failure_raises_storage_error():
    mock_session = MagicMock()
    mock_session.commit.side_effect = OperationalError("INSERT", {}, Exception("disk I/O error"))

    with pytest.raises(StorageError):
        VinStore(mock_session).create(VIN_A)

    mock_session.rollback.assert_called_once()


def test_query_failure_raises_storage_error():
    mock_session = MagicMock()
    mock_session.query.return_value.scalar.side_effect = OperationalError("SELECT", {}, Exception("locked"))

    with pytest.raises(StorageError):
        VinStore(mock_session).count()


def test_created_record_is_a_vin_record(store):
    assert isinstance(store.create(VIN_A), VinRecord)


def test_stats_week_and_day_boundaries(store, db_session):
    now = datetime(2026, 10, 19, 15, 0, 0)
    week_start = datetime(2026, 10, 12, 0, 0, 0)
    store.create(VIN_A).created_at = week_start
    store.create(VIN_B).created_at = week_start - timedelta(seconds=1)
    store.create(VIN_C).created_at = datetime(2026, 10, 18, 23, 59, 59)
    db_session.commit()

    stats = store.stats(now=now)

    assert stats["thisWeek"] == 2
    assert stats["today"] == 0
    assert stats["thisMonth"] == 3


def test_database_rejects_codes_outside_vin_alphabet(db_session):
    db_session.add(VinRecord(code="1HGCM82633I123456", date_created=datetime(2024, 1, 1)))

    with pytest.raises(IntegrityError):
        db_session.commit()
    db_session.rollback()

    db_session.add(VinRecord(code="1HGCM82633A123456", date_created=datetime(2024, 1, 1)))
    db_session.commit()
