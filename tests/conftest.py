"""Shared pytest fixtures for vCenter Migrator tests."""

import pytest

from vcenter_migrator.core.credentials import StaticCredentialProvider
from vcenter_migrator.core.events import EventBus
from vcenter_migrator.core.executor import CommandExecutor
from vcenter_migrator.core.inventory import InventoryCache
from vcenter_migrator.core.session_pool import SessionPool
from vcenter_migrator.core.settings import MigratorTimeoutSettings
from vcenter_migrator.models.enums import ConnectionSide
from vcenter_migrator.services.catalog import build_default_catalog
from vcenter_migrator.services.scripts import ScriptBuilder
from vcenter_migrator.services.workflow_runner import WorkflowRunner

from .helpers import PASSWORD, SOURCE_SERVER, TARGET_SERVER, USERNAME, FakeChannel


@pytest.fixture
def settings() -> MigratorTimeoutSettings:
    return MigratorTimeoutSettings(
        connect_timeout=2,
        disconnect_timeout=1,
        probe_timeout=1,
        command_timeout=5,
        inventory_phase_timeout=5,
        migration_item_timeout=5,
        health_cache_ttl=30,
    )


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def channels() -> dict[ConnectionSide, FakeChannel]:
    return {
        ConnectionSide.SOURCE: FakeChannel(ConnectionSide.SOURCE, session_id="src-42"),
        ConnectionSide.TARGET: FakeChannel(ConnectionSide.TARGET, session_id="tgt-17"),
    }


@pytest.fixture
def credentials() -> StaticCredentialProvider:
    return StaticCredentialProvider(
        {(SOURCE_SERVER, USERNAME): PASSWORD, (TARGET_SERVER, USERNAME): PASSWORD}
    )


@pytest.fixture
def pool(channels, credentials, events, settings) -> SessionPool:
    return SessionPool(
        lambda side: channels[side], credentials=credentials, events=events, settings=settings
    )


@pytest.fixture
async def connected_pool(pool) -> SessionPool:
    await pool.connect(ConnectionSide.SOURCE, SOURCE_SERVER, USERNAME, PASSWORD)
    await pool.connect(ConnectionSide.TARGET, TARGET_SERVER, USERNAME, PASSWORD)
    return pool


@pytest.fixture
def executor(connected_pool) -> CommandExecutor:
    return CommandExecutor(connected_pool, ScriptBuilder("Scripts"), default_timeout=5)


@pytest.fixture
def inventory(executor) -> InventoryCache:
    return InventoryCache(executor, phase_timeout=5)


@pytest.fixture
def runner(executor, inventory) -> WorkflowRunner:
    return WorkflowRunner(executor, inventory, build_default_catalog(), item_timeout=5)
