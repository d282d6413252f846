"""
Docket: Case Timeline Service
Timeline domain model.

Models:
    - CaseTimeline: one progress record per case (optimistically versioned).
    - CaseTimelinePhase: one row per template phase with its per-case state.

State machine (owned by ``docket.services.phase_engine``):

    PENDING ──activate──▶ ACTIVE ──complete──▶ COMPLETED
                            │
                            └────skip────────▶ SKIPPED

A backward ``update_current_phase`` may re-activate a COMPLETED/SKIPPED phase
(rework); nothing else ever leaves COMPLETED or SKIPPED.
"""

import enum
from datetime import UTC, datetime, timedelta

from docket.models import db


def _utcnow() -> datetime:
    return datetime.now(UTC)


class PhaseStatus(str, enum.Enum):
    """Per-case state of one template phase."""

    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"

    @property
    def is_finished(self) -> bool:
        return self in (PhaseStatus.COMPLETED, PhaseStatus.SKIPPED)


class CaseTimeline(db.Model):
    """
    Progress of one case through its template.

    ``version`` is the mapper's ``version_id_col``: every UPDATE carries
    ``WHERE version = <loaded version>`` so a write computed from stale state
    fails with ``StaleDataError`` instead of overwriting a newer transition.
    ``current_phase_order`` is 0 only before initialization.
    """

    __tablename__ = "case_timelines"
    __table_args__ = (
        db.UniqueConstraint("case_id", name="uq_case_timeline_case"),
        db.Index("idx_case_timeline_type", "case_type"),
    )

    id = db.Column(db.Integer, primary_key=True)
    case_id = db.Column(db.Integer, nullable=False, comment="Owning case (immutable)")
    case_type = db.Column(
        db.String(100), nullable=False,
        comment="Canonical template key resolved at initialization (immutable)",
    )
    current_phase_order = db.Column(db.Integer, nullable=False, default=0)
    version = db.Column(db.Integer, nullable=False)
    initialized_by = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )

    phases = db.relationship(
        "CaseTimelinePhase",
        back_populates="timeline",
        order_by="CaseTimelinePhase.phase_order",
        lazy="select",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}

    # ── Lookups ──────────────────────────────────────────────────────────

    def phase(self, order: int) -> "CaseTimelinePhase | None":
        for ph in self.phases:
            if ph.phase_order == order:
                return ph
        return None

    @property
    def active_phase(self) -> "CaseTimelinePhase | None":
        for ph in self.phases:
            if ph.status == PhaseStatus.ACTIVE:
                return ph
        return None

    @property
    def is_complete(self) -> bool:
        """Terminal: initialized, nothing ACTIVE and the final phase finished."""
        if not self.phases or self.current_phase_order == 0:
            return False
        return self.active_phase is None and self.phases[-1].status.is_finished

    def invariant_violations(self) -> list[str]:
        """Return human-readable breaches of the timeline invariants (empty when sound)."""
        problems = []
        active = [ph.phase_order for ph in self.phases if ph.status == PhaseStatus.ACTIVE]
        if len(active) > 1:
            problems.append(f"multiple ACTIVE phases: {active}")
        if self.current_phase_order:
            if self.phase(self.current_phase_order) is None:
                problems.append(f"current_phase_order {self.current_phase_order} not in timeline")
            if active and active[0] != self.current_phase_order:
                problems.append(
                    f"ACTIVE phase {active[0]} != current_phase_order {self.current_phase_order}"
                )
            if not active and not self.is_complete:
                problems.append("no ACTIVE phase on a non-terminal timeline")
        for ph in self.phases:
            if ph.phase_order < self.current_phase_order and not ph.status.is_finished:
                problems.append(f"phase {ph.phase_order} below current is {ph.status.value}")
        return problems

    # ── Serialisation ────────────────────────────────────────────────────

    def to_dict(self, template=None) -> dict:
        """
        Serialise with progress counters.

        ``template`` is the ``TimelineTemplate`` governing this case; when
        given, each phase is enriched with its description, display attributes,
        expected duration and an estimated completion date.
        """
        definitions = {d.order: d for d in template.phases} if template else {}
        completed = sum(1 for ph in self.phases if ph.status == PhaseStatus.COMPLETED)
        skipped = sum(1 for ph in self.phases if ph.status == PhaseStatus.SKIPPED)
        total = len(self.phases)
        progress = round((completed + skipped) / total * 100, 2) if total else 0.0

        return {
            "id": self.id,
            "case_id": self.case_id,
            "case_type": self.case_type,
            "current_phase": self.current_phase_order,
            "total_phases": total,
            "completed_phases": completed,
            "skipped_phases": skipped,
            "progress_percentage": progress,
            "is_complete": self.is_complete,
            "version": self.version,
            "phases": [
                ph.to_dict(
                    definitions.get(ph.phase_order),
                    is_current=ph.phase_order == self.current_phase_order,
                )
                for ph in self.phases
            ],
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<CaseTimeline case={self.case_id} {self.case_type} @{self.current_phase_order}>"


class CaseTimelinePhase(db.Model):
    """Per-case state of one template phase."""

    __tablename__ = "case_timeline_phases"
    __table_args__ = (
        db.UniqueConstraint("timeline_id", "phase_order", name="uq_timeline_phase_order"),
    )

    id = db.Column(db.Integer, primary_key=True)
    timeline_id = db.Column(
        db.Integer,
        db.ForeignKey("case_timelines.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    phase_order = db.Column(db.Integer, nullable=False)
    phase_name = db.Column(
        db.String(150), nullable=False,
        comment="Snapshot of the template name at initialization",
    )
    status = db.Column(
        db.Enum(PhaseStatus, name="timeline_phase_status", native_enum=False, length=20),
        nullable=False,
        default=PhaseStatus.PENDING,
    )
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    updated_by = db.Column(db.Integer, nullable=True)

    timeline = db.relationship("CaseTimeline", back_populates="phases")

    def to_dict(self, definition=None, *, is_current: bool = False) -> dict:
        expected_days = definition.expected_duration_days if definition else None
        estimated = None
        if expected_days is not None and self.started_at is not None:
            estimated = (self.started_at + timedelta(days=expected_days)).isoformat()
        return {
            "id": self.id,
            "phase_order": self.phase_order,
            "phase_name": self.phase_name,
            "phase_description": definition.description if definition else None,
            "icon": definition.icon if definition else None,
            "color": definition.color if definition else None,
            "status": self.status.value,
            "is_current": is_current,
            "expected_duration_days": expected_days,
            "estimated_completion_date": estimated,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "notes": self.notes,
            "updated_by": self.updated_by,
        }

    def __repr__(self):
        return f"<CaseTimelinePhase {self.phase_order}:{self.phase_name} {self.status.value}>"
