"""Shared fixtures: an in-memory desk, actors, and intake payloads."""

import pytest

from loandesk_core.config import CoreSettings
from loandesk_core.core.desk import CaseDesk
from loandesk_core.infrastructure.store import InMemoryStore
from loandesk_core.models import Actor, ActorRole


@pytest.fixture
def settings():
    return CoreSettings(conflict_retry_wait=0.0)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def desk(store, settings):
    return CaseDesk(store=store, settings=settings)


@pytest.fixture
def telecaller():
    return Actor(user_id="tc-1", role=ActorRole.TELECALLER, name="Priya")


@pytest.fixture
def officer():
    return Actor(user_id="off-1", role=ActorRole.OFFICER, name="Anil")


@pytest.fixture
def admin():
    return Actor(user_id="adm-1", role=ActorRole.ADMIN, name="Meera")


def make_payload(**overrides):
    payload = {
        "name": "Rohit Sharma",
        "phone": "9876543210",
        "problem": "Credit card settlement",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def payload():
    return make_payload()


@pytest.fixture
async def case(desk, telecaller, payload):
    return await desk.cases.create_case(payload, telecaller)
