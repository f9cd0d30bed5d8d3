"""Tests for wiring the reservation core from settings."""

from unittest.mock import AsyncMock, patch

import pytest

from src.config.settings import Settings
from src.services.container import build_core


class TestBuildCore:
    """build_core assembles components from settings."""

    def test_components_share_store_and_broadcaster(self, settings: Settings) -> None:
        core = build_core(settings)
        assert core.manager.store is core.store
        assert core.manager.broadcaster is core.broadcaster
        assert core.reaper.manager is core.manager
        assert core.journal is None
        assert core.manager.lock_ttl.total_seconds() == 300
        assert core.manager.retention.total_seconds() == 3600
        assert len(core.store.grid) == 16

    def test_reaper_interval_must_be_below_ttl(self) -> None:
        with pytest.raises(ValueError):
            build_core(Settings(lock_ttl_seconds=10, reaper_interval_seconds=10))

    def test_journal_enabled_creates_writer(self, settings: Settings) -> None:
        core = build_core(settings.model_copy(update={"journal_enabled": True}))
        assert core.journal is not None
        assert core.manager.journal is core.journal


class TestCoreLifecycle:
    """startup/shutdown drive the background workers."""

    async def test_startup_starts_reaper_when_enabled(self, settings: Settings) -> None:
        core = build_core(settings.model_copy(update={"reaper_enabled": True}))
        await core.startup()
        try:
            assert core.reaper.running
        finally:
            await core.shutdown()
        assert not core.reaper.running

    async def test_startup_skips_reaper_when_disabled(self, settings: Settings) -> None:
        core = build_core(settings)
        await core.startup()
        assert not core.reaper.running
        await core.shutdown()

    async def test_startup_restores_from_journal(self, settings: Settings) -> None:
        core = build_core(settings.model_copy(update={"journal_enabled": True}))
        with (
            patch.object(core.journal, "load", AsyncMock(return_value=[])) as load,
            patch.object(core.journal, "start", AsyncMock()) as start,
            patch.object(core.journal, "stop", AsyncMock()) as stop,
            patch.object(core.manager, "restore", AsyncMock(return_value=0)) as restore,
        ):
            await core.startup()
            await core.shutdown()

        load.assert_awaited_once()
        restore.assert_awaited_once_with([])
        start.assert_awaited_once()
        stop.assert_awaited_once()
