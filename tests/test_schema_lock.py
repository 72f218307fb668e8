import pytest

from core.db import QueryFailed, StoreError
from core.schema_lock import SchemaLock


def test_acquire_creates_marker_then_locks(fake_store) -> None:
    lock = SchemaLock(fake_store)

    assert lock.acquire() is True
    assert lock.held
    assert fake_store.statements == [
        "CREATE TABLE IF NOT EXISTS schemalock ( schemalock int(1))",
        "LOCK TABLE schemalock WRITE",
    ]

    lock.release()
    assert fake_store.statements[-1] == "UNLOCK TABLES"
    assert not lock.held
    assert fake_store.closed_connections == 1


def test_acquire_returns_false_when_marker_cannot_be_created(fake_store) -> None:
    fake_store.on("CREATE TABLE", error=QueryFailed("CREATE command denied to user 'keeper'"))
    lock = SchemaLock(fake_store)

    assert lock.acquire() is False
    assert not lock.held
    assert not any(sql.startswith("LOCK TABLE") for sql in fake_store.statements)
    assert fake_store.closed_connections == 1

    lock.release()
    assert "UNLOCK TABLES" not in fake_store.statements


def test_failed_lock_closes_its_own_connection(fake_store) -> None:
    fake_store.on("LOCK TABLE", error=QueryFailed("Lock wait timeout exceeded"))

    assert SchemaLock(fake_store).acquire() is False
    assert fake_store.closed_connections == 1


def test_failed_lock_keeps_a_borrowed_connection_open(fake_store) -> None:
    fake_store.on("LOCK TABLE", error=QueryFailed("Lock wait timeout exceeded"))
    conn = fake_store.connect()
    lock = SchemaLock(fake_store, conn)

    assert lock.acquire() is False
    assert not conn.closed
    lock.release()
    assert fake_store.statements[-1] == "UNLOCK TABLES"


def test_acquire_returns_false_when_unreachable(fake_store) -> None:
    fake_store.connected = False
    assert SchemaLock(fake_store).acquire() is False


def test_release_failure_is_not_raised(fake_store) -> None:
    lock = SchemaLock(fake_store)
    assert lock.acquire()
    fake_store.on("UNLOCK TABLES", error=QueryFailed("server has gone away"))

    lock.release()
    assert not lock.held


def test_context_manager_releases_on_exit(fake_store) -> None:
    with SchemaLock(fake_store) as lock:
        assert lock.held
    assert fake_store.statements[-1] == "UNLOCK TABLES"


def test_context_manager_raises_when_unavailable(fake_store) -> None:
    fake_store.on("LOCK TABLE", error=QueryFailed("denied"))
    with pytest.raises(StoreError):
        with SchemaLock(fake_store):
            pass
