from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import pytest
from fastapi.routing import APIRoute

from lockerlease.main import app

EXPECTED_ROUTES = {
    ("/lockers/allocate", "post"),
    ("/lockers/{locker_id}/unlock", "post"),
    ("/lockers/{locker_id}/lock", "post"),
    ("/lockers/{locker_id}/release", "post"),
    ("/occupants/{occupant_ref}/release", "post"),
    ("/lockers/{locker_id}/occupant", "put"),
    ("/lockers/{locker_id}/maintenance", "post"),
    ("/lockers/{locker_id}/maintenance", "delete"),
    ("/lockers", "get"),
    ("/lockers/{locker_id}", "get"),
    ("/events/stream", "get"),
    ("/health", "get"),
}


def _normalize_http_methods(methods: Iterable[str]) -> set[str]:
    return {m.lower() for m in methods}


def _is_public_api_route(route: APIRoute) -> bool:
    # Exclude docs/openapi endpoints if they exist
    return not route.path.startswith(("/docs", "/redoc", "/openapi"))


def test_all_fastapi_routes_are_declared_in_openapi_paths() -> None:
    """
    Contract test: every public APIRoute must exist in the OpenAPI `paths`.
    """
    spec = app.openapi()
    paths: dict[str, Any] = spec.get("paths", {})

    api_routes = [r for r in app.routes if isinstance(r, APIRoute) and _is_public_api_route(r)]
    assert api_routes, "No API routes found; is the router included in the app?"

    missing = [route.path for route in api_routes if route.path not in paths]
    assert not missing, f"Routes missing from OpenAPI paths: {missing}"


def test_exposed_routes_match_the_published_interface() -> None:
    api_routes = [r for r in app.routes if isinstance(r, APIRoute) and _is_public_api_route(r)]

    actual = set()
    for route in api_routes:
        methods = _normalize_http_methods(route.methods or set())
        # FastAPI automatically includes HEAD for GET routes; OpenAPI often omits it.
        methods.discard("head")
        actual.update((route.path, method) for method in methods)

    assert actual == EXPECTED_ROUTES


@pytest.mark.parametrize(
    "schema_name",
    ["Allocation", "UnlockRequest", "UnlockResult", "LockResult", "LockerStatus", "OccupantAssignment"],
)
def test_openapi_declares_expected_component_schemas(schema_name: str) -> None:
    """
    Ensure commonly used response/request schemas exist in the contract.
    """
    schemas = app.openapi().get("components", {}).get("schemas", {})

    assert schema_name in schemas, f"Missing components.schemas.{schema_name} in OpenAPI"
