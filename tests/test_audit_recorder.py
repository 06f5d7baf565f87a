"""Unit tests for audit/recorder.py and the transaction pairing in the services.

Covers:
- N sequential updates produce exactly N UPDATE entries, newest first, with
  strictly decreasing timestamps
- entries carry the editor id and username snapshot, or the anonymous sentinel
- a failed audit write rolls the paired mutation back (forced and real failure)
- DELETE keeps a pre-deletion snapshot findable by natural key
- identity payloads never contain the password hash
- the clock never repeats an instant
- the recorder exposes no update or delete path
"""

import json
from dataclasses import replace
from datetime import datetime, timezone

import pytest
from sqlalchemy import text

from audit.models import EntityType, OperationKind
from audit.recorder import AuditRecorder, _MonotonicClock, snapshot
from auth.models import AuthContext, Role
from core.errors import AuditWriteError, Conflict, NotFound
from fleet.models import Client, Driver, Order, OrderStatus


def _client(identification: str = "900", name: str = "Acme") -> Client:
    return Client(full_name=name, identification=identification, phone="6011234", address="Calle 1")


def _driver(identification: str = "1001", name: str = "Ana Ruiz") -> Driver:
    return Driver(full_name=name, identification=identification, birth_date="1990-01-01", phone="+573001112233")


class TestHistoryOrdering:
    def test_n_updates_produce_n_entries_newest_first(self, fleet_service, admin_ctx) -> None:
        client = fleet_service.create_client(admin_ctx, _client())
        n = 5
        for i in range(n):
            fleet_service.update_client(admin_ctx, client.id, _client(name=f"Acme v{i}"))

        history = fleet_service.client_history(client.id)
        updates = [e for e in history if e.operation is OperationKind.UPDATE]
        assert len(updates) == n, f"Expected {n} UPDATE entries, got {len(updates)}"
        assert len(history) == n + 1, "Expected the CREATE entry as well"
        assert history[-1].operation is OperationKind.CREATE, "Oldest entry must be the CREATE"

        stamps = [e.changed_at for e in history]
        assert all(a > b for a, b in zip(stamps, stamps[1:])), f"Timestamps not strictly decreasing: {stamps}"
        assert json.loads(history[0].payload)["full_name"] == f"Acme v{n - 1}", "Newest entry must be the last update"

    def test_entry_carries_editor_snapshot(self, fleet_service, admin_ctx) -> None:
        client = fleet_service.create_client(admin_ctx, _client())
        entry = fleet_service.client_history(client.id)[0]
        assert entry.editor_id == admin_ctx.identity.id
        assert entry.editor_username == admin_ctx.username
        assert entry.natural_key == "900"

    def test_anonymous_editor_sentinel(self, engine, recorder, fleet_store) -> None:
        client = _client()
        with engine.connect() as conn:
            client.id = fleet_store.insert_client(conn, client)
            entry = recorder.record(
                conn, EntityType.CLIENT, client.id, OperationKind.CREATE, AuthContext.anonymous(), snapshot(client)
            )
            conn.commit()
        assert entry.editor_username == "anonymous"
        assert entry.editor_id is None

    def test_status_change_only_when_value_changes(self, fleet_service, admin_ctx) -> None:
        driver = fleet_service.create_driver(admin_ctx, _driver())
        fleet_service.set_driver_status(admin_ctx, driver.id, True)
        fleet_service.set_driver_status(admin_ctx, driver.id, False)
        ops = [e.operation for e in fleet_service.driver_history(driver.id)]
        assert ops == [OperationKind.STATUS_CHANGE, OperationKind.CREATE]


class TestAtomicity:
    def test_forced_audit_failure_leaves_entity_unchanged(self, fleet_service, admin_ctx, monkeypatch) -> None:
        client = fleet_service.create_client(admin_ctx, _client())

        def failing_record(*args, **kwargs):
            raise AuditWriteError("Could not record audit entry.")

        monkeypatch.setattr(fleet_service.recorder, "record", failing_record)
        with pytest.raises(AuditWriteError):
            fleet_service.update_client(admin_ctx, client.id, _client(name="Should Not Persist"))
        monkeypatch.undo()

        assert fleet_service.get_client(client.id).full_name == "Acme", "Mutation must be rolled back"
        ops = [e.operation for e in fleet_service.client_history(client.id)]
        assert ops == [OperationKind.CREATE], "No entry may exist for the rolled-back update"

    def test_real_audit_failure_rolls_back_create(self, engine, fleet_service, fleet_store, admin_ctx) -> None:
        """Dropping the audit table makes the INSERT fail inside the same transaction."""
        with engine.connect() as conn:
            conn.execute(text("DROP TABLE driver_audit"))
            conn.commit()

        with pytest.raises(AuditWriteError):
            fleet_service.create_driver(admin_ctx, _driver())

        assert fleet_store.get_driver_by_identification("1001") is None, "Driver row must be rolled back"

    def test_status_write_on_vanished_row_records_nothing(self, fleet_service, admin_ctx, monkeypatch) -> None:
        """A row deleted after the existence check yields NotFound and no audit entry."""
        client = fleet_service.create_client(admin_ctx, _client())
        stale = replace(client, id=client.id + 100)
        monkeypatch.setattr(fleet_service, "get_client", lambda client_id: stale)
        with pytest.raises(NotFound):
            fleet_service.set_client_status(admin_ctx, stale.id, False)
        assert fleet_service.client_history(stale.id) == []

    def test_order_status_on_vanished_row_records_nothing(self, fleet_service, admin_ctx, monkeypatch) -> None:
        client = fleet_service.create_client(admin_ctx, _client())
        order = fleet_service.create_order(admin_ctx, Order(client_id=client.id, origin="A", destination="B"))
        stale = replace(order, id=order.id + 100)
        monkeypatch.setattr(fleet_service, "get_order", lambda order_id: stale)
        with pytest.raises(NotFound):
            fleet_service.change_order_status(admin_ctx, stale.id, OrderStatus.CANCELLED)
        assert fleet_service.order_history(stale.id) == []

    def test_identity_status_on_vanished_row_records_nothing(self, identity_service, admin_ctx, monkeypatch) -> None:
        created = identity_service.register(admin_ctx, "maria", "password123", Role.CLIENTE)
        stale = replace(created, id=created.id + 100)
        monkeypatch.setattr(identity_service, "get", lambda identity_id: stale)
        with pytest.raises(NotFound):
            identity_service.set_status(admin_ctx, stale.id, False)
        assert identity_service.history(stale.id) == []

    def test_failed_validation_writes_no_entry(self, fleet_service, admin_ctx) -> None:
        fleet_service.create_client(admin_ctx, _client())
        with pytest.raises(Conflict):
            fleet_service.create_client(admin_ctx, _client(name="Duplicate"))
        assert len(fleet_service.client_history_by_identification("900")) == 1


class TestQueries:
    def test_delete_keeps_snapshot_by_natural_key(self, fleet_service, admin_ctx) -> None:
        driver = fleet_service.create_driver(admin_ctx, _driver())
        fleet_service.delete_driver(admin_ctx, driver.id)

        history = fleet_service.driver_history_by_identification("1001")
        assert [e.operation for e in history] == [OperationKind.DELETE, OperationKind.CREATE]
        assert json.loads(history[0].payload)["full_name"] == "Ana Ruiz", "DELETE payload is the pre-deletion state"

    def test_driver_name_search_is_case_insensitive(self, fleet_service, admin_ctx) -> None:
        fleet_service.create_driver(admin_ctx, _driver("1001", "Ana Ruiz"))
        fleet_service.create_driver(admin_ctx, _driver("1002", "Luis Mora"))
        hits = fleet_service.driver_history_by_name("ruiz")
        assert [e.natural_key for e in hits] == ["1001"]

    def test_for_editor_by_username(self, fleet_service, admin_ctx) -> None:
        client = fleet_service.create_client(admin_ctx, _client())
        order = fleet_service.create_order(admin_ctx, Order(client_id=client.id, origin="A", destination="B"))
        entries = fleet_service.order_history_by_editor(admin_ctx.username)
        assert [e.entity_id for e in entries] == [order.id]
        assert fleet_service.order_history_by_editor("someone-else") == []

    def test_for_editor_requires_a_selector(self, recorder) -> None:
        with pytest.raises(ValueError):
            recorder.for_editor(EntityType.ORDER)

    def test_identity_payload_has_no_hash(self, identity_service, admin_ctx) -> None:
        created = identity_service.register(admin_ctx, "maria", "password123", Role.CLIENTE)
        entry = identity_service.history(created.id)[0]
        payload = json.loads(entry.payload)
        assert "hashed_password" not in payload
        assert payload["username"] == "maria"
        assert entry.natural_key == "maria"

    def test_self_registration_attributed_to_new_identity(self, identity_service) -> None:
        created = identity_service.register(AuthContext.anonymous(), "pedro", "password123", Role.CONDUCTOR)
        entry = identity_service.history(created.id)[0]
        assert entry.editor_username == "pedro"
        assert entry.editor_id == created.id


class TestRecorderShape:
    def test_clock_never_repeats(self) -> None:
        fixed = datetime(2026, 1, 1, tzinfo=timezone.utc)
        clock = _MonotonicClock(lambda: fixed)
        stamps = [clock() for _ in range(3)]
        assert stamps[0] < stamps[1] < stamps[2]

    def test_no_mutation_methods(self, recorder: AuditRecorder) -> None:
        for name in ("update", "delete", "remove", "purge"):
            assert not hasattr(recorder, name), f"Recorder must not expose {name}()"
