"""
Unit tests for the one-off verification runner.
DatabaseManager, the orchestrator and the browser factory are replaced by mocks.

Run: pytest backend/tests/test_main.py -v
"""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from shared.models.domain import BatchSummary
from verifier import main as main_mod
from verifier.errors import LaunchError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("MV_VERIFIER_VISIBLE", "MV_VERIFIER_HEADLESS"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(main_mod, "setup_logging", MagicMock())
    monkeypatch.setattr(main_mod, "get_settings", MagicMock())


@pytest.fixture
def db(monkeypatch: pytest.MonkeyPatch) -> MagicMock:
    instance = MagicMock()
    instance.connect = AsyncMock()
    instance.ping = AsyncMock()
    instance.disconnect = AsyncMock()
    monkeypatch.setattr(main_mod, "DatabaseManager", MagicMock(return_value=instance))
    return instance


def _orchestrator(monkeypatch: pytest.MonkeyPatch, summary: BatchSummary) -> MagicMock:
    orchestrator = MagicMock()
    orchestrator.run_member_verification = AsyncMock(return_value=summary)
    orchestrator.run_seller_verification = AsyncMock(return_value=summary)
    monkeypatch.setattr(main_mod, "VerificationOrchestrator", MagicMock(return_value=orchestrator))
    return orchestrator


# ── Arguments ───────────────────────────────────────────────────────────

def test_watch_is_alias_for_visible() -> None:
    assert main_mod.parse_args(["members", "--watch"]).visible is True
    assert main_mod.parse_args(["members", "--visible"]).visible is True
    assert main_mod.parse_args(["members"]).visible is False


def test_unknown_job_rejected() -> None:
    with pytest.raises(SystemExit):
        main_mod.parse_args(["promoters"])


def test_plain_job_is_headless() -> None:
    settings = main_mod.build_settings(main_mod.parse_args(["members"]))
    assert settings.effective_headless
    assert settings.effective_timeout_ms == 30_000


def test_watch_uses_supervised_timeout() -> None:
    settings = main_mod.build_settings(main_mod.parse_args(["sellers", "--watch"]))
    assert not settings.effective_headless
    assert settings.effective_timeout_ms == 60_000


def test_record_forces_visible_mode() -> None:
    settings = main_mod.build_settings(main_mod.parse_args(["record"]))
    assert not settings.effective_headless
    assert settings.effective_timeout_ms == 60_000


# ── Exit codes ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_completed_run_exits_zero(monkeypatch: pytest.MonkeyPatch, db: MagicMock) -> None:
    orchestrator = _orchestrator(monkeypatch, BatchSummary(job="member_verification"))

    assert await main_mod.main(["members"]) == 0

    orchestrator.run_member_verification.assert_awaited_once()
    orchestrator.run_seller_verification.assert_not_awaited()
    db.ping.assert_awaited_once()
    db.disconnect.assert_awaited_once()


@pytest.mark.asyncio
async def test_aborted_run_exits_one(monkeypatch: pytest.MonkeyPatch, db: MagicMock) -> None:
    orchestrator = _orchestrator(monkeypatch, BatchSummary(job="seller_verification", aborted=True))

    assert await main_mod.main(["sellers"]) == 1

    orchestrator.run_seller_verification.assert_awaited_once()
    db.disconnect.assert_awaited_once()


@pytest.mark.asyncio
async def test_database_disconnected_when_ping_fails(monkeypatch: pytest.MonkeyPatch, db: MagicMock) -> None:
    _orchestrator(monkeypatch, BatchSummary(job="member_verification"))
    db.ping.side_effect = ConnectionRefusedError("db down")

    with pytest.raises(ConnectionRefusedError):
        await main_mod.main(["members"])

    db.disconnect.assert_awaited_once()


# ── Record ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_record_launch_failure_exits_one(monkeypatch: pytest.MonkeyPatch) -> None:
    create = AsyncMock(side_effect=LaunchError("Failed to launch browser: no chromium"))
    record = AsyncMock()
    monkeypatch.setattr(main_mod, "create_session", create)
    monkeypatch.setattr(main_mod, "record_manual_login", record)

    assert await main_mod.main(["record"]) == 1

    assert create.await_args.kwargs["headless"] is False
    record.assert_not_awaited()


@pytest.mark.asyncio
async def test_record_closes_session(monkeypatch: pytest.MonkeyPatch) -> None:
    session = MagicMock()
    session.close = AsyncMock()
    monkeypatch.setattr(main_mod, "create_session", AsyncMock(return_value=session))
    monkeypatch.setattr(main_mod, "record_manual_login", AsyncMock())

    assert await main_mod.main(["record"]) == 0

    session.close.assert_awaited_once()
