import pytest

from triage import activity
from triage.notifier import LoggingSender
from triage.registry import InMemoryTechnicianRegistry
from triage.services import build_services


@pytest.fixture(autouse=True)
def reset_activity():
    activity.clear()
    yield
    activity.clear()


@pytest.fixture
def svc():
    """Fresh engine with the mock pool: tech-1 plumbing/general, tech-2 electrical/hvac, tech-3 busy."""
    return build_services(registry=InMemoryTechnicianRegistry(), sender=LoggingSender())


@pytest.fixture
def empty_svc():
    """Fresh engine with no technicians registered."""
    return build_services(registry=InMemoryTechnicianRegistry(), sender=LoggingSender(), seed=False)
