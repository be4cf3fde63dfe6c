import pytest
import pytest_asyncio

from anchor_sync import (
    AnchorSynchronizer,
    CloudAnchorProvider,
    InMemoryTrackingSession,
    RoomRegistryClient,
)
from core_logging import Journal
from tests.helpers.fake_sdk import FakeCloudAnchorSdk
from tests.helpers.registry_stub import RegistryStub


@pytest.fixture
def registry_stub():
    return RegistryStub()


@pytest.fixture
def sdk():
    return FakeCloudAnchorSdk()


@pytest.fixture
def session():
    return InMemoryTrackingSession()


@pytest.fixture
def journal():
    return Journal(max_entries=500)


@pytest_asyncio.fixture
async def registry(registry_stub):
    client = registry_stub.client()
    yield RoomRegistryClient("http://registry.test", client=client)
    await client.aclose()


@pytest.fixture
def provider(sdk):
    return CloudAnchorProvider(sdk, ttl_days=1, host_timeout_ms=2000, resolve_timeout_ms=2000)


@pytest_asyncio.fixture
async def synchronizer(registry, provider, session, journal):
    sync = AnchorSynchronizer(
        registry=registry, provider=provider, session=session, journal=journal,
    )
    yield sync
    await sync.close()
