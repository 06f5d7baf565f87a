"""Unit tests for fleet/services.py and auth/service.py business rules.

Covers:
- natural keys are unique (Conflict) and only an ADMIN may change them
- a driver holds at most MAX_VEHICLES_PER_DRIVER vehicles
- delete guards: drivers with vehicles, clients with orders
- order lifecycle: PENDING on create, ASSIGNED on assignment, COMPLETED may
  only be CANCELLED, CANCELLED is terminal, timestamps stamped on transit and
  delivery
- order listings by client / driver / status / created range
- identity rules: role/link consistency, ADMIN creation, last-admin and
  self-deactivation guards
"""

from datetime import datetime, timedelta, timezone

import pytest

from auth.models import AuthContext, Identity, Role
from core.errors import Conflict, NotFound, Unauthorized, ValidationFailure
from fleet.models import MAX_VEHICLES_PER_DRIVER, Client, Driver, Order, OrderStatus, Vehicle


def _driver(identification: str = "1001") -> Driver:
    return Driver(full_name="Ana Ruiz", identification=identification, birth_date="1990-01-01", phone="+573001112233")


def _vehicle(plate: str) -> Vehicle:
    return Vehicle(plate=plate, capacity_kg=1000.0, brand="Volvo", model="FH", year=2020)


def _client(identification: str = "900") -> Client:
    return Client(full_name="Acme", identification=identification, phone="6011234", address="Calle 1")


def _conductor_ctx(driver_id: int) -> AuthContext:
    return AuthContext.for_identity(Identity(username="carlos", role=Role.CONDUCTOR, id=99, driver_id=driver_id))


@pytest.fixture
def order_setup(fleet_service, admin_ctx):
    client = fleet_service.create_client(admin_ctx, _client())
    driver = fleet_service.create_driver(admin_ctx, _driver())
    vehicle = fleet_service.create_vehicle(admin_ctx, _vehicle("ABC-123"))
    order = fleet_service.create_order(admin_ctx, Order(client_id=client.id, origin="Bogota", destination="Cali"))
    return client, driver, vehicle, order


class TestUniqueness:
    def test_duplicate_plate_conflict(self, fleet_service, admin_ctx) -> None:
        fleet_service.create_vehicle(admin_ctx, _vehicle("ABC-123"))
        with pytest.raises(Conflict):
            fleet_service.create_vehicle(admin_ctx, _vehicle("ABC-123"))

    def test_duplicate_driver_identification_conflict(self, fleet_service, admin_ctx) -> None:
        fleet_service.create_driver(admin_ctx, _driver())
        with pytest.raises(Conflict):
            fleet_service.create_driver(admin_ctx, _driver())

    def test_identification_change_requires_admin(self, fleet_service, admin_ctx) -> None:
        client = fleet_service.create_client(admin_ctx, _client())
        owner = AuthContext.for_identity(Identity(username="c", role=Role.CLIENTE, id=42, client_id=client.id))
        with pytest.raises(Unauthorized):
            fleet_service.update_client(owner, client.id, _client(identification="901"))
        updated = fleet_service.update_client(admin_ctx, client.id, _client(identification="901"))
        assert updated.identification == "901"

    def test_update_missing_driver_is_not_found(self, fleet_service, admin_ctx) -> None:
        with pytest.raises(NotFound):
            fleet_service.update_driver(admin_ctx, 4242, _driver())
        assert fleet_service.driver_history(4242) == [], "A failed update must leave no audit entry"


class TestVehicleAssignment:
    def test_cap_of_vehicles_per_driver(self, fleet_service, admin_ctx) -> None:
        driver = fleet_service.create_driver(admin_ctx, _driver())
        plates = [f"AAA-{i:03d}" for i in range(MAX_VEHICLES_PER_DRIVER + 1)]
        vehicles = [fleet_service.create_vehicle(admin_ctx, _vehicle(p)) for p in plates]
        for v in vehicles[:MAX_VEHICLES_PER_DRIVER]:
            fleet_service.assign_vehicle(admin_ctx, driver.id, v.id)
        with pytest.raises(Conflict):
            fleet_service.assign_vehicle(admin_ctx, driver.id, vehicles[-1].id)
        assert len(fleet_service.vehicles_of_driver(driver.id)) == MAX_VEHICLES_PER_DRIVER

    def test_vehicle_assigned_elsewhere_conflict(self, fleet_service, admin_ctx) -> None:
        d1 = fleet_service.create_driver(admin_ctx, _driver("1"))
        d2 = fleet_service.create_driver(admin_ctx, _driver("2"))
        vehicle = fleet_service.create_vehicle(admin_ctx, _vehicle("ABC-123"))
        fleet_service.assign_vehicle(admin_ctx, d1.id, vehicle.id)
        with pytest.raises(Conflict):
            fleet_service.assign_vehicle(admin_ctx, d2.id, vehicle.id)

    def test_inactive_vehicle_cannot_be_assigned(self, fleet_service, admin_ctx) -> None:
        driver = fleet_service.create_driver(admin_ctx, _driver())
        vehicle = fleet_service.create_vehicle(admin_ctx, _vehicle("ABC-123"))
        fleet_service.set_vehicle_status(admin_ctx, vehicle.id, False)
        with pytest.raises(Conflict):
            fleet_service.assign_vehicle(admin_ctx, driver.id, vehicle.id)

    def test_unassign_requires_current_assignment(self, fleet_service, admin_ctx) -> None:
        driver = fleet_service.create_driver(admin_ctx, _driver())
        vehicle = fleet_service.create_vehicle(admin_ctx, _vehicle("ABC-123"))
        with pytest.raises(Conflict):
            fleet_service.unassign_vehicle(admin_ctx, driver.id, vehicle.id)
        fleet_service.assign_vehicle(admin_ctx, driver.id, vehicle.id)
        assert fleet_service.unassign_vehicle(admin_ctx, driver.id, vehicle.id).driver_id is None

    def test_update_vehicle_keeps_assignment(self, fleet_service, admin_ctx) -> None:
        driver = fleet_service.create_driver(admin_ctx, _driver())
        vehicle = fleet_service.create_vehicle(admin_ctx, _vehicle("ABC-123"))
        fleet_service.assign_vehicle(admin_ctx, driver.id, vehicle.id)
        updated = fleet_service.update_vehicle(admin_ctx, vehicle.id, _vehicle("ABC-123"))
        assert updated.driver_id == driver.id

    def test_delete_driver_with_vehicles_conflict(self, fleet_service, admin_ctx) -> None:
        driver = fleet_service.create_driver(admin_ctx, _driver())
        vehicle = fleet_service.create_vehicle(admin_ctx, _vehicle("ABC-123"))
        fleet_service.assign_vehicle(admin_ctx, driver.id, vehicle.id)
        with pytest.raises(Conflict):
            fleet_service.delete_driver(admin_ctx, driver.id)


class TestOrders:
    def test_create_is_pending_with_server_timestamp(self, order_setup) -> None:
        _client_, _driver_, _vehicle_, order = order_setup
        assert order.status is OrderStatus.PENDING
        assert order.created_at, "created_at must be set by the service"

    def test_create_for_inactive_client_conflict(self, fleet_service, admin_ctx, order_setup) -> None:
        client = order_setup[0]
        fleet_service.set_client_status(admin_ctx, client.id, False)
        with pytest.raises(Conflict):
            fleet_service.create_order(admin_ctx, Order(client_id=client.id, origin="A", destination="B"))

    def test_create_for_missing_client_not_found(self, fleet_service, admin_ctx) -> None:
        with pytest.raises(NotFound):
            fleet_service.create_order(admin_ctx, Order(client_id=777, origin="A", destination="B"))

    def test_assignment_moves_pending_to_assigned(self, fleet_service, admin_ctx, order_setup) -> None:
        _client_, driver, vehicle, order = order_setup
        assigned = fleet_service.assign_order(admin_ctx, order.id, driver.id, vehicle.id)
        assert assigned.status is OrderStatus.ASSIGNED
        assert (assigned.driver_id, assigned.vehicle_id) == (driver.id, vehicle.id)

    def test_full_lifecycle_stamps_actual_times(self, fleet_service, admin_ctx, order_setup) -> None:
        _client_, driver, vehicle, order = order_setup
        fleet_service.assign_order(admin_ctx, order.id, driver.id, vehicle.id)
        ctx = _conductor_ctx(driver.id)
        in_transit = fleet_service.change_order_status(ctx, order.id, OrderStatus.IN_TRANSIT)
        assert in_transit.actual_pickup is not None
        done = fleet_service.change_order_status(ctx, order.id, OrderStatus.COMPLETED)
        assert done.actual_delivery is not None
        assert done.status is OrderStatus.COMPLETED

    def test_completed_may_only_be_cancelled(self, fleet_service, admin_ctx, order_setup) -> None:
        order = order_setup[3]
        fleet_service.change_order_status(admin_ctx, order.id, OrderStatus.COMPLETED)
        for target in (OrderStatus.PENDING, OrderStatus.ASSIGNED, OrderStatus.IN_TRANSIT):
            with pytest.raises(Conflict):
                fleet_service.change_order_status(admin_ctx, order.id, target)
        cancelled = fleet_service.change_order_status(admin_ctx, order.id, OrderStatus.CANCELLED)
        assert cancelled.status is OrderStatus.CANCELLED

    def test_cancelled_is_terminal(self, fleet_service, admin_ctx, order_setup) -> None:
        _client_, driver, vehicle, order = order_setup
        fleet_service.change_order_status(admin_ctx, order.id, OrderStatus.CANCELLED)
        for target in (OrderStatus.PENDING, OrderStatus.COMPLETED):
            with pytest.raises(Conflict):
                fleet_service.change_order_status(admin_ctx, order.id, target)
        with pytest.raises(Conflict):
            fleet_service.assign_order(admin_ctx, order.id, driver.id, vehicle.id)

    def test_same_status_is_not_audited(self, fleet_service, admin_ctx, order_setup) -> None:
        order = order_setup[3]
        fleet_service.change_order_status(admin_ctx, order.id, OrderStatus.PENDING)
        assert len(fleet_service.order_history(order.id)) == 1

    def test_update_keeps_status_and_created_at(self, fleet_service, admin_ctx, order_setup) -> None:
        client, driver, vehicle, order = order_setup
        fleet_service.assign_order(admin_ctx, order.id, driver.id, vehicle.id)
        updated = fleet_service.update_order(
            admin_ctx, order.id, Order(client_id=client.id, origin="Medellin", destination="Cali")
        )
        assert updated.origin == "Medellin"
        assert updated.status is OrderStatus.ASSIGNED
        assert updated.created_at == order.created_at
        assert updated.driver_id == driver.id

    def test_delete_client_with_orders_conflict(self, fleet_service, admin_ctx, order_setup) -> None:
        with pytest.raises(Conflict):
            fleet_service.delete_client(admin_ctx, order_setup[0].id)

    def test_listings(self, fleet_service, admin_ctx, order_setup) -> None:
        client, driver, vehicle, order = order_setup
        fleet_service.assign_order(admin_ctx, order.id, driver.id, vehicle.id)
        assert [o.id for o in fleet_service.orders_by_client(client.id)] == [order.id]
        assert fleet_service.orders_by_client(client.id, OrderStatus.PENDING) == []
        assert [o.id for o in fleet_service.orders_by_driver(driver.id, OrderStatus.ASSIGNED)] == [order.id]
        assert [o.id for o in fleet_service.orders_by_status(OrderStatus.ASSIGNED)] == [order.id]

    def test_created_between(self, fleet_service, order_setup) -> None:
        order = order_setup[3]
        now = datetime.now(timezone.utc)
        hits = fleet_service.orders_created_between(now - timedelta(hours=1), now + timedelta(hours=1))
        assert [o.id for o in hits] == [order.id]
        assert fleet_service.orders_created_between(now + timedelta(hours=1), now + timedelta(hours=2)) == []
        with pytest.raises(ValidationFailure):
            fleet_service.orders_created_between(now, now - timedelta(seconds=1))


class TestIdentityRules:
    def test_duplicate_username_conflict(self, identity_service, admin_ctx) -> None:
        identity_service.register(admin_ctx, "maria", "password123", Role.CLIENTE)
        with pytest.raises(Conflict):
            identity_service.register(admin_ctx, "maria", "password456", Role.CLIENTE)

    def test_short_password_rejected(self, identity_service, admin_ctx) -> None:
        with pytest.raises(ValidationFailure):
            identity_service.register(admin_ctx, "maria", "short", Role.CLIENTE)

    def test_link_must_match_role(self, identity_service, fleet_service, admin_ctx) -> None:
        driver = fleet_service.create_driver(admin_ctx, _driver())
        with pytest.raises(ValidationFailure):
            identity_service.register(admin_ctx, "maria", "password123", Role.CLIENTE, driver_id=driver.id)

    def test_driver_link_is_exclusive(self, identity_service, fleet_service, admin_ctx) -> None:
        driver = fleet_service.create_driver(admin_ctx, _driver())
        identity_service.register(admin_ctx, "carlos", "password123", Role.CONDUCTOR, driver_id=driver.id)
        with pytest.raises(Conflict):
            identity_service.register(admin_ctx, "pablo", "password123", Role.CONDUCTOR, driver_id=driver.id)

    def test_missing_linked_client_not_found(self, identity_service, admin_ctx) -> None:
        with pytest.raises(NotFound):
            identity_service.register(admin_ctx, "maria", "password123", Role.CLIENTE, client_id=555)

    def test_only_admin_creates_admin(self, identity_service) -> None:
        with pytest.raises(Unauthorized):
            identity_service.register(AuthContext.anonymous(), "eve", "password123", Role.ADMIN)

    def test_last_admin_guards(self, identity_service, admin_ctx) -> None:
        other = identity_service.register(admin_ctx, "maria", "password123", Role.CLIENTE)
        other_ctx = AuthContext.for_identity(other)
        with pytest.raises(Conflict):
            identity_service.set_status(other_ctx, admin_ctx.identity.id, False)
        with pytest.raises(Conflict):
            identity_service.update(admin_ctx, admin_ctx.identity.id, Role.CLIENTE)

    def test_no_self_deactivation(self, identity_service, admin_ctx) -> None:
        identity_service.register(admin_ctx, "second", "password123", Role.ADMIN)
        with pytest.raises(Conflict):
            identity_service.set_status(admin_ctx, admin_ctx.identity.id, False)

    def test_ensure_admin_is_idempotent(self, identity_service) -> None:
        assert identity_service.ensure_admin("admin", "admin") is not None
        assert identity_service.ensure_admin("admin", "admin") is None
