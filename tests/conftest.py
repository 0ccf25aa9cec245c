"""Shared pytest fixtures for availability tests."""
import sys
sys.dont_write_bytecode = True

from datetime import date  # noqa: E402

import pytest  # noqa: E402

from bookholiday.domain.conflict_resolver import ConflictResolver  # noqa: E402
from bookholiday.domain.property_registry import PropertyRegistry  # noqa: E402
from bookholiday.infra.block_store import MemoryBlockStore  # noqa: E402
from bookholiday.infra.settings import AvailabilitySettings  # noqa: E402
from bookholiday.services import availability as availability_module  # noqa: E402
from bookholiday.services.availability import AvailabilityService  # noqa: E402

TODAY = date(2024, 1, 1)


@pytest.fixture(autouse=True)
def _reset_availability_service():
    """Reset the process-wide service to avoid cross-test contamination.

    The service is a module-level singleton holding every property index.
    Without this reset, bookings made by one test would block dates in
    the next one.
    """
    availability_module.set_availability_service(None)
    yield
    availability_module.set_availability_service(None)


@pytest.fixture
def registry():
    return PropertyRegistry(MemoryBlockStore(), lock_timeout_seconds=1.0)


@pytest.fixture
def resolver(registry):
    """Resolver whose "today" is 2024-01-01 so fixed 2024 dates are bookable."""
    return ConflictResolver(registry, today=lambda: TODAY)


@pytest.fixture
def service(resolver):
    """Service installed as the process-wide instance (used by the API)."""
    svc = AvailabilityService(AvailabilitySettings(), resolver=resolver)
    availability_module.set_availability_service(svc)
    return svc
