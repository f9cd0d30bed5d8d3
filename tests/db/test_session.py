"""Tests for the async database session dependency."""

import contextlib
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.db import session as session_module
from src.db.session import dispose_engine, get_session


def _factory(mock_session: AsyncMock) -> MagicMock:
    mock_factory = MagicMock()
    mock_ctx = AsyncMock()
    mock_ctx.__aenter__.return_value = mock_session
    mock_ctx.__aexit__.return_value = False
    mock_factory.return_value = mock_ctx
    return mock_factory


class TestGetSession:
    """Session dependency yields and commits."""

    async def test_commits_on_success(self) -> None:
        """Session is committed after successful use."""
        mock_session = AsyncMock()

        with patch(
            "src.db.session._get_session_factory",
            return_value=_factory(mock_session),
        ):
            gen = get_session()
            session = await gen.__anext__()
            assert session is mock_session
            with contextlib.suppress(StopAsyncIteration):
                await gen.__anext__()

        mock_session.commit.assert_awaited_once()

    async def test_rolls_back_on_error(self) -> None:
        """Session is rolled back when the caller raises."""
        mock_session = AsyncMock()

        with patch(
            "src.db.session._get_session_factory",
            return_value=_factory(mock_session),
        ):
            gen = get_session()
            await gen.__anext__()
            with pytest.raises(RuntimeError):
                await gen.athrow(RuntimeError("boom"))

        mock_session.rollback.assert_awaited_once()
        mock_session.commit.assert_not_awaited()


class TestDisposeEngine:
    """dispose_engine clears cached engine and factory."""

    async def test_dispose_resets_cache(self) -> None:
        engine = AsyncMock()
        with (
            patch.object(session_module, "_engine", engine),
            patch.object(session_module, "_session_factory", MagicMock()),
        ):
            await dispose_engine()
            assert session_module._engine is None
            assert session_module._session_factory is None
        engine.dispose.assert_awaited_once()
