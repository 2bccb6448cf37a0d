"""
Verification orchestrator.
Pulls pending subjects, drives one browser session per batch, matches, and persists justified status transitions.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from shared.models.domain import (
    BatchSummary,
    MatchResult,
    PortalContent,
    VerificationOutcome,
    VerificationSubject,
)
from shared.models.enums import OutcomeCategory, SubjectKind, VerificationStatus
from shared.utils.logging import get_logger
from shared.utils.metrics import SESSION_ERRORS, VERIFICATION_OUTCOMES, track_batch

from verifier.browser import BrowserSession, SessionFactory, session_factory_from_settings
from verifier.config import VerifierSettings, get_verifier_settings
from verifier.directory import MemberDirectory
from verifier.matcher import match_subject
from verifier.store import VerificationStore

logger = get_logger(__name__)

MEMBER_JOB = "member_verification"
SELLER_JOB = "seller_verification"
VENDOR_LOCATION = "vendor program page"

ContentSource = Callable[[VerificationSubject], Awaitable[PortalContent]]


def outcome_from_result(
    subject: VerificationSubject,
    result: MatchResult,
    location: str,
) -> VerificationOutcome:
    """Map a match result to a status transition. Never yields FAILED."""
    if result.error:
        return VerificationOutcome(
            subject=subject,
            status=VerificationStatus.MANUAL_REVIEW,
            note=f"Error during verification: {result.error}",
            category=OutcomeCategory.ERROR,
        )
    if result.found:
        label = subject.discriminator_type.label
        return VerificationOutcome(
            subject=subject,
            status=VerificationStatus.VERIFIED,
            note=(
                f"Verified on {location}: name and {label} match found. "
                f"Name: {result.matched_name}, {label.capitalize()}: {result.matched_identifier}"
            ),
            category=OutcomeCategory.VERIFIED,
            auto_approve=subject.kind.auto_approves,
        )
    return VerificationOutcome(
        subject=subject,
        status=VerificationStatus.MANUAL_REVIEW,
        note="Verification inconclusive - requires manual review: " + result.describe_mismatch(location),
        category=OutcomeCategory.MANUAL_REVIEW,
    )


def missing_fields_outcome(subject: VerificationSubject, missing: list[str]) -> VerificationOutcome:
    return VerificationOutcome(
        subject=subject,
        status=VerificationStatus.MANUAL_REVIEW,
        note="Missing " + " and ".join(missing),
        category=OutcomeCategory.MANUAL_REVIEW,
    )


def error_outcome(subject: VerificationSubject, note: str) -> VerificationOutcome:
    return VerificationOutcome(
        subject=subject,
        status=VerificationStatus.MANUAL_REVIEW,
        note=note,
        category=OutcomeCategory.ERROR,
    )


class VerificationOrchestrator:
    """
    Runs member/promoter batches against the gated directory and seller
    batches against the public vendor listing. The only writer of
    verification status.
    """

    def __init__(
        self,
        store: VerificationStore,
        session_factory: Optional[SessionFactory] = None,
        settings: Optional[VerifierSettings] = None,
        directory: Optional[MemberDirectory] = None,
    ) -> None:
        self._store = store
        self._settings = settings or get_verifier_settings()
        self._session_factory = session_factory or session_factory_from_settings(self._settings)
        self._directory = directory or MemberDirectory(self._settings)

    # ── Entry points ────────────────────────────────────────────────────

    async def run_member_verification(self) -> BatchSummary:
        """Members and promoters: login once, then one directory search per subject."""
        directory = self._directory

        async def prepare(session: BrowserSession) -> ContentSource:
            await directory.login(session)

            async def per_subject(subject: VerificationSubject) -> PortalContent:
                return await directory.search(session, subject)

            return per_subject

        return await self._run_batch(
            MEMBER_JOB,
            (SubjectKind.MEMBER, SubjectKind.PROMOTER),
            prepare,
            location=directory.location,
            item_delay_s=self._settings.navigated_item_delay_s,
        )

    async def run_seller_verification(self) -> BatchSummary:
        """Sellers: load the vendor listing once and match everyone against the snapshot."""
        url = self._settings.vendor_listing_url

        async def prepare(session: BrowserSession) -> ContentSource:
            await session.navigate(url)
            content = await session.extract_content()
            logger.info("vendor_listing_captured", url=url, text_chars=len(content.text))

            async def cached(_subject: VerificationSubject) -> PortalContent:
                return content

            return cached

        return await self._run_batch(
            SELLER_JOB,
            (SubjectKind.SELLER,),
            prepare,
            location=VENDOR_LOCATION,
            item_delay_s=self._settings.cached_item_delay_s,
        )

    # ── Batch driver ────────────────────────────────────────────────────

    async def _run_batch(
        self,
        job: str,
        kinds: tuple[SubjectKind, ...],
        prepare: Callable[[BrowserSession], Awaitable[ContentSource]],
        location: str,
        item_delay_s: float,
    ) -> BatchSummary:
        summary = BatchSummary(job=job)
        log = logger.bind(job=job)
        log.info("batch_started")

        async with track_batch(job):
            try:
                subjects = await self._fetch_pending(kinds)
            except Exception as exc:
                log.exception("fetch_pending_failed", error=str(exc))
                summary.aborted = True
                summary.session_error = f"Failed to fetch pending subjects: {exc}"
                return self._finish(summary, log)

            if not subjects:
                log.info("no_pending_subjects")
                return self._finish(summary, log)

            log.info("pending_subjects_fetched", count=len(subjects), kinds=[k.value for k in kinds])
            processed = 0
            session: Optional[BrowserSession] = None
            try:
                session = await self._session_factory()
                content_for = await prepare(session)
                for index, subject in enumerate(subjects):
                    needed_browser = await self._process_subject(subject, content_for, location, summary)
                    processed += 1
                    if needed_browser and item_delay_s > 0 and index < len(subjects) - 1:
                        await asyncio.sleep(item_delay_s)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                SESSION_ERRORS.labels(job=job, error=type(exc).__name__).inc()
                log.error("batch_session_error", error=str(exc), error_type=type(exc).__name__)
                summary.aborted = True
                summary.session_error = str(exc)
                await self._abort_remaining(subjects[processed:], exc, location, summary)
            finally:
                if session is not None:
                    await session.close()

        return self._finish(summary, log)

    async def _fetch_pending(self, kinds: tuple[SubjectKind, ...]) -> list[VerificationSubject]:
        subjects: list[VerificationSubject] = []
        for kind in kinds:
            subjects.extend(await self._store.fetch_pending_subjects(kind))
        return subjects

    async def _process_subject(
        self,
        subject: VerificationSubject,
        content_for: ContentSource,
        location: str,
        summary: BatchSummary,
    ) -> bool:
        """Verify one subject and persist the transition. Returns True if the matcher ran."""
        missing = subject.missing_fields()
        if missing:
            await self._record(missing_fields_outcome(subject, missing), summary)
            return False

        try:
            content = await content_for(subject)
            result = match_subject(content, subject.name, subject.discriminator, subject.discriminator_type)
            outcome = outcome_from_result(subject, result, location)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception(
                "subject_verification_error",
                kind=subject.kind.value,
                subject_id=subject.id,
                error=str(exc),
            )
            outcome = error_outcome(subject, f"Error during verification: {exc}")
        await self._record(outcome, summary)
        return True

    async def _abort_remaining(
        self,
        remaining: list[VerificationSubject],
        exc: Exception,
        location: str,
        summary: BatchSummary,
    ) -> None:
        note = f"Session error on {location}: {exc}"
        for subject in remaining:
            await self._record(error_outcome(subject, note), summary)

    async def _record(self, outcome: VerificationOutcome, summary: BatchSummary) -> None:
        subject = outcome.subject
        try:
            await self._store.persist_verification_outcome(
                subject, outcome.status, outcome.note, outcome.auto_approve
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception(
                "persist_outcome_failed",
                kind=subject.kind.value,
                subject_id=subject.id,
                status=outcome.status.value,
                error=str(exc),
            )
            outcome = outcome.model_copy(update={"category": OutcomeCategory.ERROR})

        summary.record(outcome)
        VERIFICATION_OUTCOMES.labels(kind=subject.kind.value, outcome=outcome.category.value).inc()
        logger.info(
            "subject_outcome",
            line=outcome.log_line,
            kind=subject.kind.value,
            subject_id=subject.id,
            status=outcome.status.value,
            auto_approve=outcome.auto_approve,
        )

    def _finish(self, summary: BatchSummary, log: Any) -> BatchSummary:
        summary.finished_at = datetime.now(timezone.utc)
        log.info("batch_summary", **summary.as_log_fields())
        return summary
