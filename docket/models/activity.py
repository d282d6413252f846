"""
Docket: Case Timeline Service
Case activity model: the append-only audit trail of a case.

Models:
    - CaseActivity: immutable, append-only activity entry.

The timeline is a derived, overwritable projection; these rows are the record
of what happened and when. Rows are never updated; they are only deleted
together with their case (see ``phase_engine.purge_case``).
"""

import enum
import json
from datetime import UTC, datetime

from sqlalchemy import event

from docket.models import db


class ActivityType(str, enum.Enum):
    """Canonical activity types.

    Stored as plain strings: callers may record types outside this list and
    they are kept verbatim.
    """

    # Timeline engine
    TIMELINE_INITIALIZED = "TIMELINE_INITIALIZED"
    PHASE_UPDATED = "PHASE_UPDATED"
    PHASE_COMPLETED = "PHASE_COMPLETED"
    PHASE_SKIPPED = "PHASE_SKIPPED"
    # Case record
    CASE_CREATED = "CASE_CREATED"
    CASE_UPDATED = "CASE_UPDATED"
    STATUS_CHANGED = "STATUS_CHANGED"
    ASSIGNMENT_CHANGED = "ASSIGNMENT_CHANGED"
    # Documents
    DOCUMENT_UPLOADED = "DOCUMENT_UPLOADED"
    DOCUMENT_DOWNLOADED = "DOCUMENT_DOWNLOADED"
    DOCUMENT_VERSION_ADDED = "DOCUMENT_VERSION_ADDED"
    # Notes
    NOTE_ADDED = "NOTE_ADDED"
    NOTE_UPDATED = "NOTE_UPDATED"
    NOTE_DELETED = "NOTE_DELETED"
    # Reminders / tasks
    TASK_CREATED = "TASK_CREATED"
    TASK_UPDATED = "TASK_UPDATED"
    TASK_COMPLETED = "TASK_COMPLETED"
    TASK_DELETED = "TASK_DELETED"
    # Deadlines, payments, hearings
    DEADLINE_SET = "DEADLINE_SET"
    DEADLINE_UPDATED = "DEADLINE_UPDATED"
    DEADLINE_MET = "DEADLINE_MET"
    DEADLINE_MISSED = "DEADLINE_MISSED"
    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
    PAYMENT_SCHEDULED = "PAYMENT_SCHEDULED"
    PAYMENT_MISSED = "PAYMENT_MISSED"
    HEARING_SCHEDULED = "HEARING_SCHEDULED"
    HEARING_COMPLETED = "HEARING_COMPLETED"
    HEARING_CANCELLED = "HEARING_CANCELLED"
    OTHER = "OTHER"


# Single-letter codes written by the legacy note feature
LEGACY_ACTIVITY_CODES = {
    "N": ActivityType.NOTE_ADDED.value,
    "U": ActivityType.NOTE_UPDATED.value,
    "D": ActivityType.NOTE_DELETED.value,
}


def normalize_activity_type(activity_type) -> str:
    """Translate legacy codes; keep every other value verbatim.

    ``ActivityType`` members collapse to their value; a missing or blank type
    becomes ``OTHER``.
    """
    if isinstance(activity_type, ActivityType):
        return activity_type.value
    if activity_type is None or not str(activity_type).strip():
        return ActivityType.OTHER.value
    return LEGACY_ACTIVITY_CODES.get(activity_type, activity_type)


class CaseActivity(db.Model):
    """
    One notable event on a case.

    ``reference_id`` / ``reference_type`` point at what the activity concerns
    (a phase order with ``timeline_phase``, a note id with ``note``, …).
    """

    __tablename__ = "case_activities"
    __table_args__ = (
        db.Index("idx_case_activity_case_created", "case_id", "created_at"),
        db.Index("idx_case_activity_type", "activity_type"),
    )

    id = db.Column(db.Integer, primary_key=True)
    case_id = db.Column(db.Integer, nullable=False, index=True)
    activity_type = db.Column(db.String(50), nullable=False)
    reference_id = db.Column(db.Integer, nullable=True)
    reference_type = db.Column(db.String(50), nullable=True)
    description = db.Column(db.Text, nullable=True)
    user_id = db.Column(db.Integer, nullable=True, comment="Null for system-generated entries")
    metadata_json = db.Column(db.Text, nullable=False, default="{}")
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def meta(self) -> dict:
        """Deserialise *metadata_json* to a Python dict."""
        try:
            return json.loads(self.metadata_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "case_id": self.case_id,
            "activity_type": self.activity_type,
            "reference_id": self.reference_id,
            "reference_type": self.reference_type,
            "description": self.description,
            "user_id": self.user_id,
            "metadata": self.meta,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<CaseActivity {self.id}: {self.activity_type} case={self.case_id}>"


@event.listens_for(CaseActivity, "before_update")
def _reject_activity_update(mapper, connection, target):
    raise ValueError(f"CaseActivity {target.id} is append-only and cannot be modified")


# ── Convenience writer ───────────────────────────────────────────────────────

def append_activity(
    *,
    case_id: int,
    activity_type,
    reference_id: int | None = None,
    reference_type: str | None = None,
    description: str | None = None,
    user_id: int | None = None,
    metadata: dict | None = None,
) -> CaseActivity:
    """
    Append a single activity row.  Uses ``flush`` so callers keep
    transaction control: the phase engine commits the row together with
    the timeline change it describes.

    Returns the (flushed) CaseActivity instance.
    """
    entry = CaseActivity(
        case_id=case_id,
        activity_type=normalize_activity_type(activity_type),
        reference_id=reference_id,
        reference_type=reference_type,
        description=description,
        user_id=user_id,
        metadata_json=json.dumps(metadata or {}, default=str),
    )
    db.session.add(entry)
    db.session.flush()
    return entry
