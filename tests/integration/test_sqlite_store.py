import sqlite3
from datetime import UTC, datetime, timedelta

import pytest

from quietstats.adapters.repos import PageViewRepo, RealtimeRepo, SessionRepo, SiteRepo
from quietstats.adapters.sqlite.migrator import SQLiteMigrator
from quietstats.adapters.sqlite.store import SQLiteKeyValueStore
from quietstats.core.entities import PageView, Session, Site
from quietstats.core.ports.storage import StorageError

T0 = datetime(2024, 1, 15, 12, 0, tzinfo=UTC)


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "test.db")


@pytest.fixture
def migrator(db_path):
    return SQLiteMigrator(db_path)


@pytest.fixture
def store(db_path, migrator):
    migrator.run_migrations()
    return SQLiteKeyValueStore(db_path)


def test_migrations_apply_once(db_path, migrator):
    assert migrator.run_migrations() == ["0001_items.sql"]
    assert migrator.run_migrations() == []

    conn = sqlite3.connect(db_path)
    tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    conn.close()
    assert "items" in tables


def test_put_get_roundtrip(store):
    store.put_item({"pk": "SITE#a", "sk": "SESSION#1", "count": 1, "tags": ["x"]})
    assert store.get_item("SITE#a", "SESSION#1") == {
        "pk": "SITE#a",
        "sk": "SESSION#1",
        "count": 1,
        "tags": ["x"],
    }
    assert store.get_item("SITE#a", "SESSION#2") is None


def test_put_is_upsert(store):
    store.put_item({"pk": "P", "sk": "S", "v": 1})
    store.put_item({"pk": "P", "sk": "S", "v": 2})
    assert store.get_item("P", "S")["v"] == 2
    assert len(store.query("P")) == 1


def test_query_prefix_is_literal(store):
    store.put_item({"pk": "P", "sk": "PV#1"})
    store.put_item({"pk": "P", "sk": "PVX1"})
    store.put_item({"pk": "P", "sk": "P_#1"})
    assert [i["sk"] for i in store.query("P", sk_prefix="PV#")] == ["PV#1"]
    assert [i["sk"] for i in store.query("P", sk_prefix="P_")] == ["P_#1"]


def test_query_between_and_limit(store):
    for n in range(1, 6):
        store.put_item({"pk": "P", "sk": f"K#{n}"})
    assert [i["sk"] for i in store.query("P", sk_between=("K#2", "K#4"))] == [
        "K#2",
        "K#3",
        "K#4",
    ]
    assert [i["sk"] for i in store.query("P", limit=2)] == ["K#1", "K#2"]


def test_delete(store):
    store.put_item({"pk": "P", "sk": "S"})
    store.delete_item("P", "S")
    assert store.get_item("P", "S") is None


def test_unmigrated_database_raises_storage_error(tmp_path):
    bare = SQLiteKeyValueStore(str(tmp_path / "bare.db"))
    with pytest.raises(StorageError):
        bare.put_item({"pk": "P", "sk": "S"})
    with pytest.raises(StorageError):
        bare.query("P")


def test_external_connection(db_path, migrator):
    migrator.run_migrations()
    conn = sqlite3.connect(db_path)
    store = SQLiteKeyValueStore(db_path, connection=conn)
    store.put_item({"pk": "P", "sk": "S"})
    assert store.get_item("P", "S") == {"pk": "P", "sk": "S"}
    conn.close()


def test_repos_over_sqlite(store):
    SiteRepo(store).save(Site(id="site-1", name="Blog", owner_id="o1"))
    assert [s.id for s in SiteRepo(store).list_by_owner("o1")] == ["site-1"]

    page_views = PageViewRepo(store)
    for minutes in (0, 10, 120):
        page_views.save(
            PageView(
                site_id="site-1",
                visitor_id="v",
                session_id="s",
                path="/",
                timestamp=T0 + timedelta(minutes=minutes),
            )
        )
    assert len(page_views.list_range("site-1", T0, T0 + timedelta(hours=1))) == 2

    sessions = SessionRepo(store)
    sessions.save(
        Session(
            id="s",
            site_id="site-1",
            visitor_id="v",
            entry_path="/",
            exit_path="/",
            started_at=T0,
            ended_at=T0,
        )
    )
    session = sessions.get("site-1", "s")
    assert session is not None
    assert session.started_at == T0


def test_realtime_counters_over_sqlite(store):
    realtime = RealtimeRepo(store)
    realtime.record("site-1", "v1", "/", T0)
    realtime.record("site-1", "v2", "/", T0)
    items = realtime.window("site-1", T0, minutes=5)
    assert len(items) == 1
    assert items[0]["pageviews"] == 2
    assert items[0]["visitors"] == ["v1", "v2"]
