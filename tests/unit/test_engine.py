from __future__ import annotations

import json
from datetime import timedelta
from typing import Any, List

import pytest
from cryptography.fernet import Fernet

from common.config import Settings
from common.errors import CodecError, NotAuthenticatedError, NotReadyError, RemoteError
from drive import codec
from state.local_store import LocalStore
from sync.engine import SyncEngine, build_engine
from sync.session import SessionManager

NAME = "subscription_tracker_data.json"


def _remote_payload(drive, file_id: str) -> Any:
    return json.loads(drive.files[file_id]["content"])


def _logged_in(engine):
    engine.login()
    return engine


# --------------- push / save ---------------
def test_unauthenticated_push_makes_no_network_call(engine, drive):
    before = len(drive.requests)

    assert engine.push({"a": 1}) is None

    assert len(drive.requests) == before
    assert engine.last_sync_time is None


def test_push_on_uninitialized_engine_is_noop(settings, store, transport, identity, clock, drive):
    eng = build_engine(settings, store=store, transport=transport, identity=identity, clock=clock)

    assert eng.push({"a": 1}) is None
    assert drive.requests == []


def test_save_requires_session(engine):
    with pytest.raises(NotAuthenticatedError):
        engine.save({"a": 1})


def test_first_push_creates_file_in_app_data_folder(engine, drive, clock):
    _logged_in(engine)

    file_id = engine.push({"subscriptions": [{"name": "Netflix"}]})

    assert drive.files[file_id]["name"] == NAME
    assert drive.files[file_id]["parents"] == ["appDataFolder"]
    assert _remote_payload(drive, file_id) == {"subscriptions": [{"name": "Netflix"}]}
    assert engine.last_sync_time == clock.t


def test_second_push_updates_same_file(engine, drive, clock):
    _logged_in(engine)
    first = engine.push({"v": 1})
    clock.advance(30)

    second = engine.save({"v": 2})

    assert second == first
    assert len(drive.files) == 1
    assert _remote_payload(drive, first) == {"v": 2}
    patch = [r for r in drive.requests if r.method == "PATCH"][-1]
    assert codec.extract_metadata_part(patch.read()).parents is None
    assert engine.last_sync_time == clock.t


def test_failed_push_raises_and_keeps_last_sync_time(engine, drive, clock):
    _logged_in(engine)
    engine.push({"v": 1})
    synced_at = engine.last_sync_time
    clock.advance(60)
    drive.fail_uploads = True

    with pytest.raises(RemoteError):
        engine.push({"v": 2})

    assert engine.last_sync_time == synced_at
    assert engine.syncing is False


# --------------- pull ---------------
def test_pull_requires_authentication(engine):
    with pytest.raises(NotAuthenticatedError):
        engine.pull()


def test_pull_requires_initialization(settings, store, transport, identity, clock):
    session = SessionManager(settings, store, identity=identity, transport=transport, clock=clock)
    session.authenticated = True
    eng = SyncEngine(session, store, file_name=NAME, clock=clock)

    with pytest.raises(NotReadyError):
        eng.pull()


def test_first_run_pull_returns_none(engine):
    _logged_in(engine)

    assert engine.pull() is None
    assert engine.last_sync_time is None


def test_pull_returns_remote_data_and_records_sync(engine, drive, clock):
    _logged_in(engine)
    drive.put(NAME, b'{"subscriptions": []}')
    clock.advance(5)

    assert engine.pull() == {"subscriptions": []}
    assert engine.last_sync_time == clock.t


def test_pull_of_corrupt_remote_file_raises(engine, drive):
    _logged_in(engine)
    drive.put(NAME, b"not json")

    with pytest.raises(CodecError):
        engine.pull()
    assert engine.last_sync_time is None


# --------------- reconcile ---------------
def test_reconcile_threshold(engine, drive, clock):
    _logged_in(engine)
    file_id = engine.push({"v": 1})
    t0 = engine.last_sync_time
    restored: List[Any] = []

    drive.touch(file_id, b'{"v": 2}', modified=t0 + timedelta(milliseconds=9999))
    assert engine.reconcile(restored.append) is False
    assert restored == []
    assert engine.last_sync_time == t0

    drive.touch(file_id, b'{"v": 3}', modified=t0 + timedelta(milliseconds=10001))
    clock.advance(60)
    assert engine.reconcile(restored.append) is True
    assert restored == [{"v": 3}]
    assert engine.last_sync_time == clock.t

    # The same remote version is not restored twice
    assert engine.reconcile(restored.append) is False
    assert restored == [{"v": 3}]


def test_reconcile_when_never_synced_restores(engine, drive):
    _logged_in(engine)
    drive.put(NAME, b'{"from": "other device"}')
    restored: List[Any] = []

    assert engine.reconcile(restored.append) is True
    assert restored == [{"from": "other device"}]


def test_reconcile_without_remote_file(engine):
    _logged_in(engine)
    assert engine.reconcile(lambda _: pytest.fail("must not restore")) is False


def test_reconcile_when_not_connected_is_silent(engine, drive):
    drive.put(NAME, b"{}")
    before = len(drive.requests)

    assert engine.reconcile(lambda _: pytest.fail("must not restore")) is False
    assert len(drive.requests) == before


def test_reconcile_swallows_transport_errors(engine, drive):
    _logged_in(engine)
    drive.put(NAME, b"{}")
    drive.fail_all = True

    assert engine.reconcile(lambda _: pytest.fail("must not restore")) is False
    assert engine.syncing is False


def test_reconcile_swallows_callback_errors(engine, drive):
    _logged_in(engine)
    drive.put(NAME, b'{"v": 1}')

    def boom(_):
        raise KeyError("ui exploded")

    assert engine.reconcile(boom) is False
    assert engine.last_sync_time is None


def test_syncing_flag_and_reentrant_push(engine, drive):
    _logged_in(engine)
    file_id = drive.put(NAME, b'{"v": 1}')
    seen = {}

    def on_restore(data):
        seen["syncing"] = engine.syncing
        data["v"] += 1
        seen["pushed"] = engine.push(data)

    assert engine.reconcile(on_restore) is True
    assert seen == {"syncing": True, "pushed": file_id}
    assert engine.syncing is False
    assert _remote_payload(drive, file_id) == {"v": 2}


# --------------- end to end ---------------
def test_login_push_logout_login_pull(engine, identity):
    engine.login()
    engine.push({"a": 1})
    assert engine.logout() is True
    assert engine.authenticated is False
    assert identity.revoked == ["tok-1"]

    engine.login()
    assert engine.pull() == {"a": 1}


def test_status_snapshot(engine, clock):
    st = engine.status()
    assert st.initialized is True
    assert st.authenticated is False
    assert st.syncing is False
    assert st.last_sync_time is None
    assert st.init_error is None

    engine.login()
    engine.push([])
    st = engine.status()
    assert st.authenticated is True
    assert st.last_sync_time == clock.t


def test_status_with_undecryptable_store(settings, transport, identity, clock, tmp_path):
    path = tmp_path / "store.json"
    LocalStore(path, fernet_key=Fernet.generate_key()).set("last_sync_time", "2025-01-01T00:00:00.000+00:00")
    eng = build_engine(
        settings,
        store=LocalStore(path, fernet_key=Fernet.generate_key()),
        transport=transport,
        identity=identity,
        clock=clock,
    )

    assert eng.initialize() is False
    st = eng.status()
    assert st.initialized is False
    assert st.last_sync_time is None
    assert st.init_error.startswith("Local store unreadable")
    assert eng.reconcile(lambda _: pytest.fail("must not restore")) is False


def test_engine_without_credentials_reports_configuration_error(tmp_path):
    eng = build_engine(Settings(state_dir=tmp_path, ready_timeout=0.01))

    assert eng.initialize() is False
    assert "Missing Google credentials" in eng.init_error
    assert eng.push({"a": 1}) is None
    assert eng.reconcile(lambda _: None) is False
