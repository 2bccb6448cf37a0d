"""
One-off verification runner.

    python -m verifier.main members [--visible|--watch] [--debug]
    python -m verifier.main sellers
    python -m verifier.main record          # manual login, logs selector hints

The scheduled worker lives in scheduler.service; this entrypoint is for
supervised runs and portal maintenance.
"""
from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Optional, Sequence

from shared.config import get_settings
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger, setup_logging

from verifier.browser import BrowserSession, LaunchOptions, create_session
from verifier.config import VerifierSettings, get_verifier_settings
from verifier.directory import record_manual_login
from verifier.engine import VerificationOrchestrator
from verifier.errors import SessionError
from verifier.store import SqlVerificationStore

logger = get_logger(__name__)

JOBS = ("members", "sellers", "record")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="verifier", description="Run identity verification once.")
    parser.add_argument("job", choices=JOBS)
    parser.add_argument(
        "--visible",
        "--watch",
        dest="visible",
        action="store_true",
        help="show the browser window and use the supervised timeout",
    )
    parser.add_argument("--debug", action="store_true", help="debug logging")
    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace) -> VerifierSettings:
    if args.visible or args.job == "record":
        return get_verifier_settings(visible=True)
    return get_verifier_settings()


async def run_record(settings: VerifierSettings) -> int:
    session: Optional[BrowserSession] = None
    try:
        session = await create_session(headless=False, launch_options=LaunchOptions.from_settings(settings))
        await record_manual_login(session, settings)
    except SessionError as exc:
        logger.error("record_failed", error=str(exc))
        return 1
    finally:
        if session is not None:
            await session.close()
    logger.info("record_complete")
    return 0


async def run_job(job: str, settings: VerifierSettings) -> int:
    db = DatabaseManager(get_settings())
    await db.connect()
    try:
        await db.ping()
        orchestrator = VerificationOrchestrator(SqlVerificationStore(db), settings=settings)
        if job == "members":
            summary = await orchestrator.run_member_verification()
        else:
            summary = await orchestrator.run_seller_verification()
    finally:
        await db.disconnect()
    return 1 if summary.aborted else 0


async def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging("verifier", level="DEBUG" if args.debug else None)
    settings = build_settings(args)
    logger.info("verifier_run_started", job=args.job, headless=settings.effective_headless)
    if args.job == "record":
        return await run_record(settings)
    return await run_job(args.job, settings)


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
