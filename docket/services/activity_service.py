"""
Case Activity: Service Layer.

Business logic for:
    - Recording:  append one activity entry and commit it
    - Listing:    newest-first history of a case, optional type filter
    - Writers:    note and reminder-task helpers used by the case collaborators

Timeline transitions do not come through here: the phase engine appends
its entries inside its own transaction (``append_activity``).
"""

import logging

from sqlalchemy import select

from docket.core.exceptions import ValidationError
from docket.models import db
from docket.models.activity import (
    ActivityType,
    CaseActivity,
    append_activity,
    normalize_activity_type,
)

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 500

NOTE_REFERENCE_TYPE = "note"
TASK_REFERENCE_TYPE = "case_reminders"


def record_activity(
    case_id: int,
    activity_type,
    reference_id: int | None = None,
    reference_type: str | None = None,
    description: str | None = None,
    user_id: int | None = None,
    metadata: dict | None = None,
) -> CaseActivity:
    """
    Append an activity entry for ``case_id`` and commit it.

    Legacy single-letter types are normalised (``N`` -> ``NOTE_ADDED`` ...);
    any other type string is stored verbatim.
    """
    if metadata is not None and not isinstance(metadata, dict):
        raise ValidationError("metadata must be an object", details={"metadata": "invalid type"})
    try:
        entry = append_activity(
            case_id=case_id,
            activity_type=activity_type,
            reference_id=reference_id,
            reference_type=reference_type,
            description=description,
            user_id=user_id,
            metadata=metadata,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info("Activity recorded id=%s type=%s", entry.id, entry.activity_type,
                extra={"case_id": case_id, "activity_type": entry.activity_type})
    return entry


def list_activities(
    case_id: int,
    *,
    activity_type=None,
    limit: int | None = None,
) -> list[CaseActivity]:
    """
    Activity history of a case, newest first (ties broken by id).

    Args:
        activity_type: Only entries of this type (legacy codes accepted).
        limit:         Maximum entries; clamped to [1, MAX_LIST_LIMIT].
    """
    stmt = select(CaseActivity).where(CaseActivity.case_id == case_id)
    if activity_type:
        stmt = stmt.where(CaseActivity.activity_type == normalize_activity_type(activity_type))
    stmt = stmt.order_by(CaseActivity.created_at.desc(), CaseActivity.id.desc())
    if limit is not None:
        stmt = stmt.limit(max(1, min(limit, MAX_LIST_LIMIT)))
    return db.session.execute(stmt).scalars().all()


# ── Note writers ─────────────────────────────────────────────────────────────


def _log_note(activity_type: ActivityType, verb: str, case_id: int, note_id: int,
              note_title: str | None, user_id: int | None) -> CaseActivity:
    title = note_title or "Untitled"
    return record_activity(
        case_id,
        activity_type,
        reference_id=note_id,
        reference_type=NOTE_REFERENCE_TYPE,
        description=f"Note {verb}: {title}",
        user_id=user_id,
        metadata={"note_title": title},
    )


def log_note_added(case_id, note_id, note_title=None, user_id=None):
    return _log_note(ActivityType.NOTE_ADDED, "added", case_id, note_id, note_title, user_id)


def log_note_updated(case_id, note_id, note_title=None, user_id=None):
    return _log_note(ActivityType.NOTE_UPDATED, "updated", case_id, note_id, note_title, user_id)


def log_note_deleted(case_id, note_id, note_title=None, user_id=None):
    return _log_note(ActivityType.NOTE_DELETED, "deleted", case_id, note_id, note_title, user_id)


# ── Reminder task writers ────────────────────────────────────────────────────


def _log_task(activity_type: ActivityType, verb: str, case_id: int, task_id: int,
              task_title: str | None, user_id: int | None) -> CaseActivity:
    title = task_title or "Untitled"
    return record_activity(
        case_id,
        activity_type,
        reference_id=task_id,
        reference_type=TASK_REFERENCE_TYPE,
        description=f"Task {verb}: {title}",
        user_id=user_id,
        metadata={"task_title": title},
    )


def log_task_created(case_id, task_id, task_title=None, user_id=None):
    return _log_task(ActivityType.TASK_CREATED, "created", case_id, task_id, task_title, user_id)


def log_task_updated(case_id, task_id, task_title=None, user_id=None):
    return _log_task(ActivityType.TASK_UPDATED, "updated", case_id, task_id, task_title, user_id)


def log_task_completed(case_id, task_id, task_title=None, user_id=None):
    return _log_task(ActivityType.TASK_COMPLETED, "completed", case_id, task_id, task_title, user_id)


def log_task_deleted(case_id, task_id, task_title=None, user_id=None):
    return _log_task(ActivityType.TASK_DELETED, "deleted", case_id, task_id, task_title, user_id)
