"""Tests for the operational entry points."""

from unittest.mock import AsyncMock, MagicMock, patch

from scripts import init_db, serve
from src.config.settings import Settings


class TestServe:
    """serve.main runs uvicorn in factory mode."""

    def test_runs_app_factory_on_configured_address(self) -> None:
        settings = Settings(app_host="127.0.0.1", app_port=9001)
        with (
            patch.object(serve, "get_settings", return_value=settings),
            patch.object(serve.uvicorn, "run") as run,
        ):
            serve.main()

        run.assert_called_once_with(
            "src.api.app:create_app",
            factory=True,
            host="127.0.0.1",
            port=9001,
        )


class TestInitDb:
    """init_db.main creates the journal tables."""

    async def test_creates_tables_and_disposes(self) -> None:
        conn = AsyncMock()
        begin_ctx = AsyncMock()
        begin_ctx.__aenter__.return_value = conn
        begin_ctx.__aexit__.return_value = False
        engine = MagicMock()
        engine.begin.return_value = begin_ctx
        engine.dispose = AsyncMock()

        with patch.object(init_db, "create_async_engine", return_value=engine) as create:
            await init_db.main()

        assert create.call_args.args[0].startswith("postgresql+asyncpg://")
        conn.run_sync.assert_awaited_once_with(init_db.Base.metadata.create_all)
        engine.dispose.assert_awaited_once()
