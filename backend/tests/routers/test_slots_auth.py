import pytest
from fastapi import APIRouter
from fastapi.routing import APIRoute
from slotbook.deps import get_caller, get_current_user_id
from slotbook.routers import bookings, slots


@pytest.mark.parametrize("router", [slots.router, bookings.router], ids=["slots", "bookings"])
def test_router_requires_bearer_token(router: APIRouter) -> None:
    assert any(dep.dependency == get_current_user_id for dep in router.dependencies)

    for route in router.routes:
        if not isinstance(route, APIRoute):
            continue
        assert any(dep.call == get_current_user_id for dep in route.dependant.dependencies)


@pytest.mark.parametrize("router", [slots.router, bookings.router], ids=["slots", "bookings"])
def test_every_route_is_tenant_scoped(router: APIRouter) -> None:
    for route in router.routes:
        if not isinstance(route, APIRoute):
            continue
        assert route.path.startswith("/tenants/{tenant_id}/")
        assert any(dep.call == get_caller for dep in route.dependant.dependencies)
