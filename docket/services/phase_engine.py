"""
Timeline Phase Engine: Service Layer.

Business logic for:
    - Initialization:   one timeline per case from the case type's template
    - Transitions:      move pointer, complete, skip (with state validation)
    - Audit:            exactly one activity entry per accepted transition,
                        committed in the same transaction as the change
    - Serialization:    per-case lock + version check + bounded retry

Every mutating operation runs through ``_run_transition``:

    hold case lock ─▶ load (FOR UPDATE) ─▶ validate ─▶ mutate + append activity
          ▲                                                  │
          └──── rollback, recompute ◀── StaleDataError ◀── commit

A failed transition is rolled back whole; neither the timeline nor the
activity log shows partial writes.
"""

import logging
from datetime import UTC, datetime

from flask import current_app
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from docket.core.exceptions import (
    AlreadyInitializedError,
    ConcurrentModificationError,
    InvalidPhaseError,
    NotFoundError,
    TemplateNotFoundError,
)
from docket.models import db
from docket.models.activity import ActivityType, CaseActivity, append_activity
from docket.models.timeline import CaseTimeline, CaseTimelinePhase, PhaseStatus
from docket.services.case_locks import case_locks
from docket.services.template_registry import get_registry

logger = logging.getLogger(__name__)

PHASE_REFERENCE_TYPE = "timeline_phase"


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ── Loading ──────────────────────────────────────────────────────────────────


def _load_timeline(case_id: int, *, lock_row: bool = False) -> CaseTimeline | None:
    """
    Fetch the timeline with its phases, refreshing anything already in the
    session identity map. ``lock_row`` adds ``FOR UPDATE`` where supported.
    """
    stmt = (
        select(CaseTimeline)
        .where(CaseTimeline.case_id == case_id)
        .options(selectinload(CaseTimeline.phases))
        .execution_options(populate_existing=True)
    )
    if lock_row:
        stmt = stmt.with_for_update()
    return db.session.execute(stmt).scalar_one_or_none()


def load_timeline(case_id: int) -> CaseTimeline:
    """Return the case's timeline or raise NotFoundError."""
    timeline = _load_timeline(case_id)
    if timeline is None:
        raise NotFoundError(resource="CaseTimeline", resource_id=case_id)
    return timeline


def timeline_view(timeline: CaseTimeline) -> dict:
    """Serialise ``timeline`` enriched with its template's phase metadata."""
    try:
        template = get_registry().get_template(timeline.case_type)
    except TemplateNotFoundError:
        # Template withdrawn by a reload; the phase snapshot still renders
        logger.warning("Template %r no longer registered", timeline.case_type,
                       extra={"case_id": timeline.case_id})
        template = None
    return timeline.to_dict(template)


def get_timeline(case_id: int) -> dict:
    """Read-only view of a case's timeline. Raises NotFoundError if absent."""
    return timeline_view(load_timeline(case_id))


# ── Transition runner ────────────────────────────────────────────────────────


def _run_transition(case_id: int, operation: str, apply):
    """
    Run ``apply()`` as one serialized, all-or-nothing transition.

    ``apply`` loads fresh state, validates and mutates; it is re-run from
    scratch when the commit loses an optimistic-version race.

    Raises:
        ConcurrentModificationError: lock wait timed out, or the version
            conflict persisted past ``TIMELINE_CONFLICT_RETRIES`` retries.
    """
    retries = current_app.config.get("TIMELINE_CONFLICT_RETRIES", 3)
    timeout = current_app.config.get("TIMELINE_LOCK_TIMEOUT_SECONDS")

    with case_locks.hold(case_id, timeout=timeout):
        attempt = 0
        while True:
            attempt += 1
            try:
                result = apply()
                db.session.commit()
                return result
            except (StaleDataError, IntegrityError) as exc:
                # StaleDataError: version moved under us.
                # IntegrityError: a parallel initialize inserted the same case.
                db.session.rollback()
                if attempt > retries:
                    logger.warning(
                        "%s gave up after %d attempt(s): %s", operation, attempt,
                        type(exc).__name__, extra={"case_id": case_id},
                    )
                    raise ConcurrentModificationError(case_id, attempts=attempt) from exc
                logger.warning(
                    "%s conflicted (%s), retrying (attempt %d of %d)", operation,
                    type(exc).__name__, attempt + 1, retries + 1,
                    extra={"case_id": case_id},
                )
            except Exception:
                db.session.rollback()
                raise


def _require_timeline(case_id: int) -> CaseTimeline:
    timeline = _load_timeline(case_id, lock_row=True)
    if timeline is None:
        raise NotFoundError(resource="CaseTimeline", resource_id=case_id)
    return timeline


def _require_phase(timeline: CaseTimeline, phase_order: int) -> CaseTimelinePhase:
    phase = timeline.phase(phase_order)
    if phase is None:
        raise InvalidPhaseError(
            timeline.case_id, phase_order,
            f"outside the template range 1..{len(timeline.phases)}",
        )
    return phase


def _require_active(timeline: CaseTimeline, phase_order: int) -> CaseTimelinePhase:
    phase = _require_phase(timeline, phase_order)
    if timeline.is_complete:
        raise InvalidPhaseError(timeline.case_id, phase_order, "timeline is already complete")
    if phase.status != PhaseStatus.ACTIVE or phase_order != timeline.current_phase_order:
        raise InvalidPhaseError(
            timeline.case_id, phase_order,
            f"phase is {phase.status.value}, only the active phase "
            f"{timeline.current_phase_order} can transition",
        )
    return phase


def _activate(phase: CaseTimelinePhase, now: datetime, user_id: int | None) -> None:
    phase.status = PhaseStatus.ACTIVE
    phase.started_at = now
    phase.completed_at = None
    phase.updated_by = user_id


def _finish(phase: CaseTimelinePhase, status: PhaseStatus, now: datetime,
            user_id: int | None, notes: str | None) -> None:
    phase.status = status
    phase.completed_at = now
    phase.updated_by = user_id
    if notes:
        phase.notes = notes


def _advance(timeline: CaseTimeline, now: datetime, user_id: int | None) -> bool:
    """Move past the current phase. Returns True when the timeline is now terminal."""
    nxt = timeline.phase(timeline.current_phase_order + 1)
    timeline.updated_at = now
    if nxt is None:
        return True
    _activate(nxt, now, user_id)
    timeline.current_phase_order = nxt.phase_order
    return False


# ── Operations ───────────────────────────────────────────────────────────────


def _build_timeline(case_id: int, case_type: str, user_id: int | None) -> CaseTimeline:
    registry = get_registry()
    canonical = registry.resolve_case_type(case_type)
    template = registry.get_template(canonical)
    now = _utcnow()

    timeline = CaseTimeline(
        case_id=case_id,
        case_type=canonical,
        current_phase_order=1,
        initialized_by=user_id,
    )
    for definition in template.phases:
        first = definition.order == 1
        timeline.phases.append(CaseTimelinePhase(
            phase_order=definition.order,
            phase_name=definition.name,
            status=PhaseStatus.ACTIVE if first else PhaseStatus.PENDING,
            started_at=now if first else None,
            updated_by=user_id if first else None,
        ))
    db.session.add(timeline)
    db.session.flush()

    append_activity(
        case_id=case_id,
        activity_type=ActivityType.TIMELINE_INITIALIZED,
        reference_id=1,
        reference_type=PHASE_REFERENCE_TYPE,
        description=f"Timeline initialized with template '{canonical}' "
                    f"({template.phase_count} phases)",
        user_id=user_id,
        metadata={
            "case_type": canonical,
            "requested_case_type": case_type,
            "total_phases": template.phase_count,
        },
    )
    logger.info("Timeline initialized case_type=%s phases=%d", canonical,
                template.phase_count, extra={"case_id": case_id})
    return timeline


def initialize_timeline(
    case_id: int,
    case_type: str,
    user_id: int | None = None,
    *,
    exist_ok: bool = True,
) -> tuple[CaseTimeline, bool]:
    """
    Create the case's timeline from its template.

    Idempotent by default: an existing timeline is returned unchanged.

    Returns:
        (timeline, created)

    Raises:
        AlreadyInitializedError: a timeline exists and ``exist_ok`` is False.
        TemplateNotFoundError: ``case_type`` resolves to no template.
    """
    def apply():
        existing = _load_timeline(case_id, lock_row=True)
        if existing is not None:
            if not exist_ok:
                raise AlreadyInitializedError(case_id)
            if case_type and case_type.strip().lower() != existing.case_type.lower():
                logger.warning(
                    "Initialize requested case_type=%r but timeline uses %r; keeping existing",
                    case_type, existing.case_type, extra={"case_id": case_id},
                )
            return existing, False
        return _build_timeline(case_id, case_type, user_id), True

    return _run_transition(case_id, "initialize", apply)


def update_current_phase(
    case_id: int,
    target_phase_order: int,
    note: str | None = None,
    user_id: int | None = None,
    *,
    case_type: str | None = None,
) -> CaseTimeline:
    """
    Move the current pointer directly to ``target_phase_order``.

    Forward: every phase below the target still PENDING or ACTIVE becomes
    COMPLETED. Backward (rework): the previously ACTIVE phase returns to
    PENDING; later COMPLETED/SKIPPED phases keep their state. Either way the
    target becomes ACTIVE.

    When the case has no timeline yet and ``case_type`` is given, the
    timeline is initialized first in the same transaction.
    """
    def apply():
        timeline = _load_timeline(case_id, lock_row=True)
        if timeline is None:
            if not case_type:
                raise NotFoundError(resource="CaseTimeline", resource_id=case_id)
            timeline = _build_timeline(case_id, case_type, user_id)

        target = _require_phase(timeline, target_phase_order)
        previous = timeline.current_phase_order
        now = _utcnow()

        for ph in timeline.phases:
            if ph.phase_order == target_phase_order:
                continue
            if ph.phase_order < target_phase_order:
                if not ph.status.is_finished:
                    _finish(ph, PhaseStatus.COMPLETED, now, user_id, None)
            elif ph.status == PhaseStatus.ACTIVE:
                ph.status = PhaseStatus.PENDING
                ph.updated_by = user_id

        _activate(target, now, user_id)
        if note:
            target.notes = note
        timeline.current_phase_order = target_phase_order
        timeline.updated_at = now

        append_activity(
            case_id=case_id,
            activity_type=ActivityType.PHASE_UPDATED,
            reference_id=target_phase_order,
            reference_type=PHASE_REFERENCE_TYPE,
            description=note or f"Moved to phase '{target.phase_name}'",
            user_id=user_id,
            metadata={
                "phase_name": target.phase_name,
                "from_phase": previous,
                "to_phase": target_phase_order,
            },
        )
        logger.info("Current phase %s -> %s", previous, target_phase_order,
                    extra={"case_id": case_id})
        return timeline

    return _run_transition(case_id, "update_current_phase", apply)


def _close_phase(case_id: int, phase_order: int, status: PhaseStatus,
                 activity_type: ActivityType, text: str | None,
                 user_id: int | None, operation: str) -> CaseTimeline:
    def apply():
        timeline = _require_timeline(case_id)
        phase = _require_active(timeline, phase_order)
        now = _utcnow()

        _finish(phase, status, now, user_id, text)
        terminal = _advance(timeline, now, user_id)

        verb = "completed" if status == PhaseStatus.COMPLETED else "skipped"
        append_activity(
            case_id=case_id,
            activity_type=activity_type,
            reference_id=phase_order,
            reference_type=PHASE_REFERENCE_TYPE,
            description=text or f"Phase '{phase.phase_name}' {verb}",
            user_id=user_id,
            metadata={
                "phase_name": phase.phase_name,
                "next_phase": None if terminal else timeline.current_phase_order,
                "timeline_completed": terminal,
            },
        )
        logger.info("Phase %s %s%s", phase_order, verb,
                    " (timeline complete)" if terminal else "",
                    extra={"case_id": case_id})
        return timeline

    return _run_transition(case_id, operation, apply)


def complete_phase(case_id: int, phase_order: int, note: str | None = None,
                   user_id: int | None = None) -> CaseTimeline:
    """
    Mark the active phase COMPLETED and activate the next one.

    Completing the final phase leaves the timeline terminal: the pointer
    stays on the final phase and no phase is ACTIVE.

    Raises:
        InvalidPhaseError: ``phase_order`` is not the current ACTIVE phase.
    """
    return _close_phase(case_id, phase_order, PhaseStatus.COMPLETED,
                        ActivityType.PHASE_COMPLETED, note, user_id, "complete_phase")


def skip_phase(case_id: int, phase_order: int, reason: str | None = None,
               user_id: int | None = None) -> CaseTimeline:
    """Mark the active phase SKIPPED and advance exactly like completion."""
    return _close_phase(case_id, phase_order, PhaseStatus.SKIPPED,
                        ActivityType.PHASE_SKIPPED, reason, user_id, "skip_phase")


def purge_case(case_id: int) -> dict:
    """
    Delete the case's timeline and its whole activity log.

    Hook for the case-management side when a case is deleted.
    Returns counts of removed rows.
    """
    def apply():
        timeline = _load_timeline(case_id, lock_row=True)
        phases = 0
        if timeline is not None:
            phases = len(timeline.phases)
            db.session.delete(timeline)
        activities = db.session.execute(
            delete(CaseActivity).where(CaseActivity.case_id == case_id)
        ).rowcount
        return {"timeline": 1 if timeline is not None else 0,
                "phases": phases, "activities": activities}

    result = _run_transition(case_id, "purge_case", apply)
    logger.info("Case purged timeline=%d activities=%d", result["timeline"],
                result["activities"], extra={"case_id": case_id})
    return result
