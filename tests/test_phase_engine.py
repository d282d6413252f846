"""Tests for the timeline phase engine.

Coverage:
  1. initialize: first phase ACTIVE, idempotency, exist_ok=False, alias resolution
  2. get_timeline: enriched view, progress counters, NotFound
  3. complete / skip: precondition, advancement, terminal state, notes
  4. update_current_phase: forward fill, backward rework, implicit init
  5. One activity per transition, referencing the affected phase
  6. Failed transitions leave timeline and activity log untouched
  7. End-to-end "PI" scenario (Intake -> Treatment -> Settlement)
  8. purge_case removes timeline and activities
"""

import pytest

from docket.core.exceptions import (
    AlreadyInitializedError,
    InvalidPhaseError,
    NotFoundError,
    TemplateNotFoundError,
)
from docket.models import db
from docket.models.activity import CaseActivity
from docket.models.timeline import CaseTimeline, PhaseStatus
from docket.services import phase_engine as engine
from docket.services.activity_service import list_activities


def _states(case_id: int) -> dict[int, str]:
    timeline = engine.load_timeline(case_id)
    return {ph.phase_order: ph.status.value for ph in timeline.phases}


def _activity_count(case_id: int) -> int:
    return CaseActivity.query.filter_by(case_id=case_id).count()


def _assert_sound(case_id: int):
    assert engine.load_timeline(case_id).invariant_violations() == []


# ── initialize ───────────────────────────────────────────────────────────────


class TestInitialize:
    def test_first_phase_active_others_pending(self, pi_timeline):
        assert pi_timeline.current_phase_order == 1
        assert pi_timeline.case_type == "PI"
        assert pi_timeline.initialized_by == 7
        assert _states(42) == {1: "ACTIVE", 2: "PENDING", 3: "PENDING"}
        assert pi_timeline.phase(1).started_at is not None
        assert pi_timeline.phase(2).started_at is None
        _assert_sound(42)

    def test_phase_names_snapshotted(self, pi_timeline):
        assert [ph.phase_name for ph in pi_timeline.phases] == ["Intake", "Treatment", "Settlement"]

    def test_emits_timeline_initialized(self, pi_timeline):
        entries = list_activities(42)
        assert len(entries) == 1
        entry = entries[0]
        assert entry.activity_type == "TIMELINE_INITIALIZED"
        assert entry.reference_id == 1
        assert entry.reference_type == "timeline_phase"
        assert entry.user_id == 7
        assert entry.meta["total_phases"] == 3

    def test_idempotent_returns_existing_unchanged(self, pi_timeline):
        engine.complete_phase(42, 1, user_id=7)
        timeline, created = engine.initialize_timeline(42, "PI", user_id=8)
        assert created is False
        assert timeline.current_phase_order == 2
        assert _activity_count(42) == 2

    def test_idempotent_ignores_different_case_type(self, pi_timeline):
        timeline, created = engine.initialize_timeline(42, "Litigation")
        assert created is False
        assert timeline.case_type == "PI"
        assert len(timeline.phases) == 3

    def test_exist_ok_false_raises(self, pi_timeline):
        with pytest.raises(AlreadyInitializedError) as exc:
            engine.initialize_timeline(42, "PI", exist_ok=False)
        assert exc.value.case_id == 42
        assert _activity_count(42) == 1

    def test_alias_resolved_to_canonical_type(self):
        timeline, _ = engine.initialize_timeline(5, "Auto Accident")
        assert timeline.case_type == "PI"
        assert list_activities(5)[0].meta["requested_case_type"] == "Auto Accident"

    def test_unknown_case_type_writes_nothing(self):
        with pytest.raises(TemplateNotFoundError):
            engine.initialize_timeline(5, "Maritime")
        assert CaseTimeline.query.count() == 0
        assert _activity_count(5) == 0


# ── get_timeline ─────────────────────────────────────────────────────────────


class TestGetTimeline:
    def test_unknown_case_not_found(self):
        with pytest.raises(NotFoundError):
            engine.get_timeline(999)

    def test_view_carries_template_metadata(self, pi_timeline):
        view = engine.get_timeline(42)
        assert view["case_id"] == 42
        assert view["current_phase"] == 1
        assert view["total_phases"] == 3
        assert view["is_complete"] is False
        intake = view["phases"][0]
        assert intake["is_current"] is True
        assert intake["icon"] == "ri-user-add-line"
        assert intake["expected_duration_days"] == 7
        assert intake["estimated_completion_date"] is not None
        assert view["phases"][2]["phase_description"] == "Negotiate and disburse"
        assert view["phases"][2]["estimated_completion_date"] is None

    def test_progress_counts_completed_and_skipped(self, pi_timeline):
        engine.complete_phase(42, 1)
        engine.skip_phase(42, 2, "not needed")
        view = engine.get_timeline(42)
        assert view["completed_phases"] == 1
        assert view["skipped_phases"] == 1
        assert view["progress_percentage"] == 66.67

    def test_has_no_side_effects(self, pi_timeline):
        before = engine.get_timeline(42)
        engine.get_timeline(42)
        assert engine.get_timeline(42)["version"] == before["version"]
        assert _activity_count(42) == 1

    def test_withdrawn_template_still_renders(self, pi_timeline, registry):
        registry.load_mapping({"templates": [
            {"case_type": "Tax", "phases": [{"order": 1, "name": "Audit"}]},
        ]})
        view = engine.get_timeline(42)
        assert [p["phase_name"] for p in view["phases"]] == ["Intake", "Treatment", "Settlement"]
        assert view["phases"][0]["icon"] is None


# ── complete / skip ──────────────────────────────────────────────────────────


class TestCompleteAndSkip:
    def test_complete_advances_pointer(self, pi_timeline):
        timeline = engine.complete_phase(42, 1, "done intake", user_id=7)
        assert timeline.current_phase_order == 2
        assert _states(42) == {1: "COMPLETED", 2: "ACTIVE", 3: "PENDING"}
        intake = timeline.phase(1)
        assert intake.completed_at is not None
        assert intake.notes == "done intake"
        assert intake.updated_by == 7
        _assert_sound(42)

    def test_skip_marks_skipped_not_completed(self, pi_timeline):
        engine.skip_phase(42, 1, "client came in late")
        assert _states(42)[1] == "SKIPPED"
        assert engine.load_timeline(42).current_phase_order == 2
        _assert_sound(42)

    @pytest.mark.parametrize("op", [engine.complete_phase, engine.skip_phase])
    def test_non_active_phase_rejected(self, pi_timeline, op):
        with pytest.raises(InvalidPhaseError) as exc:
            op(42, 2)
        assert exc.value.phase_order == 2

    @pytest.mark.parametrize("order", [0, 4, -1])
    def test_out_of_range_rejected(self, pi_timeline, order):
        with pytest.raises(InvalidPhaseError, match="outside the template range"):
            engine.complete_phase(42, order)

    def test_already_completed_phase_rejected(self, pi_timeline):
        engine.complete_phase(42, 1)
        with pytest.raises(InvalidPhaseError):
            engine.complete_phase(42, 1)

    def test_unknown_case_not_found(self):
        with pytest.raises(NotFoundError):
            engine.complete_phase(999, 1)
        with pytest.raises(NotFoundError):
            engine.skip_phase(999, 1)

    def test_final_phase_makes_timeline_terminal(self, pi_timeline):
        engine.complete_phase(42, 1)
        engine.complete_phase(42, 2)
        timeline = engine.complete_phase(42, 3)
        assert timeline.current_phase_order == 3
        assert timeline.active_phase is None
        assert timeline.is_complete
        assert list_activities(42)[0].meta["timeline_completed"] is True
        _assert_sound(42)

    def test_terminal_timeline_rejects_transitions(self, pi_timeline):
        for order in (1, 2, 3):
            engine.complete_phase(42, order)
        with pytest.raises(InvalidPhaseError, match="already complete"):
            engine.complete_phase(42, 3)
        with pytest.raises(InvalidPhaseError):
            engine.skip_phase(42, 3)

    def test_skip_without_reason_uses_default_description(self, pi_timeline):
        engine.skip_phase(42, 1)
        assert list_activities(42)[0].description == "Phase 'Intake' skipped"


# ── update_current_phase ─────────────────────────────────────────────────────


class TestUpdateCurrentPhase:
    def test_forward_completes_everything_below(self, pi_timeline):
        timeline = engine.update_current_phase(42, 3, "fast-track", user_id=7)
        assert timeline.current_phase_order == 3
        assert _states(42) == {1: "COMPLETED", 2: "COMPLETED", 3: "ACTIVE"}
        _assert_sound(42)

    def test_forward_keeps_skipped_phases(self):
        engine.initialize_timeline(9, "Litigation")
        engine.skip_phase(9, 1, "no pleadings")
        engine.update_current_phase(9, 4)
        assert _states(9) == {1: "SKIPPED", 2: "COMPLETED", 3: "COMPLETED", 4: "ACTIVE"}
        _assert_sound(9)

    def test_backward_keeps_later_history(self):
        engine.initialize_timeline(9, "Litigation")
        engine.complete_phase(9, 1)
        engine.skip_phase(9, 2)
        engine.complete_phase(9, 3)
        engine.update_current_phase(9, 1, "rework pleadings")
        assert _states(9) == {1: "ACTIVE", 2: "SKIPPED", 3: "COMPLETED", 4: "PENDING"}
        timeline = engine.load_timeline(9)
        assert timeline.current_phase_order == 1
        assert timeline.phase(1).completed_at is None
        _assert_sound(9)

    def test_rework_then_complete_reactivates_next(self):
        engine.initialize_timeline(9, "Litigation")
        engine.complete_phase(9, 1)
        engine.complete_phase(9, 2)
        engine.update_current_phase(9, 1)
        engine.complete_phase(9, 1)
        assert _states(9) == {1: "COMPLETED", 2: "ACTIVE", 3: "PENDING", 4: "PENDING"}

    def test_backward_from_terminal_reopens(self, pi_timeline):
        for order in (1, 2, 3):
            engine.complete_phase(42, order)
        timeline = engine.update_current_phase(42, 2)
        assert not timeline.is_complete
        assert _states(42) == {1: "COMPLETED", 2: "ACTIVE", 3: "COMPLETED"}

    def test_same_phase_emits_update(self, pi_timeline):
        engine.update_current_phase(42, 1, "still on intake")
        entry = list_activities(42)[0]
        assert entry.activity_type == "PHASE_UPDATED"
        assert entry.description == "still on intake"
        assert _states(42)[1] == "ACTIVE"

    def test_activity_references_target(self, pi_timeline):
        engine.update_current_phase(42, 3, "jump", user_id=11)
        entry = list_activities(42)[0]
        assert entry.reference_id == 3
        assert entry.user_id == 11
        assert entry.meta == {"phase_name": "Settlement", "from_phase": 1, "to_phase": 3}

    @pytest.mark.parametrize("order", [0, 4])
    def test_out_of_range_rejected(self, pi_timeline, order):
        with pytest.raises(InvalidPhaseError):
            engine.update_current_phase(42, order)
        assert _states(42) == {1: "ACTIVE", 2: "PENDING", 3: "PENDING"}

    def test_unknown_case_without_case_type_not_found(self):
        with pytest.raises(NotFoundError):
            engine.update_current_phase(77, 2)
        assert CaseTimeline.query.count() == 0

    def test_unknown_case_with_case_type_initializes(self):
        timeline = engine.update_current_phase(77, 2, "picked up mid-stream", 3, case_type="PI")
        assert timeline.current_phase_order == 2
        assert _states(77) == {1: "COMPLETED", 2: "ACTIVE", 3: "PENDING"}
        types = [a.activity_type for a in list_activities(77)]
        assert sorted(types) == ["PHASE_UPDATED", "TIMELINE_INITIALIZED"]

    def test_implicit_init_rolled_back_on_invalid_target(self):
        with pytest.raises(InvalidPhaseError):
            engine.update_current_phase(77, 9, case_type="PI")
        assert CaseTimeline.query.count() == 0
        assert _activity_count(77) == 0


# ── Activity emission ────────────────────────────────────────────────────────


class TestOneActivityPerTransition:
    def test_each_transition_adds_exactly_one_entry(self, pi_timeline):
        steps = [
            (lambda: engine.complete_phase(42, 1), "PHASE_COMPLETED", 1),
            (lambda: engine.update_current_phase(42, 1), "PHASE_UPDATED", 1),
            (lambda: engine.skip_phase(42, 1, "dup"), "PHASE_SKIPPED", 1),
            (lambda: engine.complete_phase(42, 2), "PHASE_COMPLETED", 2),
        ]
        for run, activity_type, ref in steps:
            before = _activity_count(42)
            run()
            assert _activity_count(42) == before + 1
            newest = list_activities(42, limit=1)[0]
            assert (newest.activity_type, newest.reference_id) == (activity_type, ref)
            _assert_sound(42)

    def test_failed_transition_writes_nothing(self, pi_timeline):
        version = engine.load_timeline(42).version
        with pytest.raises(InvalidPhaseError):
            engine.skip_phase(42, 3)
        assert _activity_count(42) == 1
        assert engine.load_timeline(42).version == version

    def test_version_bumps_on_every_transition(self, pi_timeline):
        v1 = engine.load_timeline(42).version
        engine.complete_phase(42, 1)
        v2 = engine.load_timeline(42).version
        engine.complete_phase(42, 2)
        engine.complete_phase(42, 3)
        v3 = engine.load_timeline(42).version
        assert v1 < v2 < v3


# ── End-to-end ───────────────────────────────────────────────────────────────


def test_pi_end_to_end_scenario():
    timeline, created = engine.initialize_timeline(42, "PI")
    assert created
    assert timeline.current_phase_order == 1
    assert timeline.phase(1).status == PhaseStatus.ACTIVE

    timeline = engine.complete_phase(42, 1, "done intake", user_id=7)
    assert timeline.current_phase_order == 2
    assert _states(42) == {1: "COMPLETED", 2: "ACTIVE", 3: "PENDING"}
    completed = list_activities(42, activity_type="PHASE_COMPLETED")
    assert len(completed) == 1
    assert completed[0].reference_id == 1
    assert completed[0].description == "done intake"

    timeline = engine.skip_phase(42, 2, "not needed", user_id=7)
    assert timeline.current_phase_order == 3
    assert _states(42) == {1: "COMPLETED", 2: "SKIPPED", 3: "ACTIVE"}
    assert list_activities(42, limit=1)[0].description == "not needed"

    timeline = engine.complete_phase(42, 3, "settled", user_id=7)
    assert _states(42) == {1: "COMPLETED", 2: "SKIPPED", 3: "COMPLETED"}
    assert timeline.active_phase is None
    assert engine.get_timeline(42)["is_complete"] is True
    assert engine.get_timeline(42)["progress_percentage"] == 100.0

    assert [a.activity_type for a in list_activities(42)] == [
        "PHASE_COMPLETED", "PHASE_SKIPPED", "PHASE_COMPLETED", "TIMELINE_INITIALIZED",
    ]


# ── purge ────────────────────────────────────────────────────────────────────


class TestPurge:
    def test_purge_removes_timeline_and_activities(self, pi_timeline):
        engine.initialize_timeline(43, "PI")
        engine.complete_phase(42, 1)
        result = engine.purge_case(42)
        assert result == {"timeline": 1, "phases": 3, "activities": 2}
        with pytest.raises(NotFoundError):
            engine.load_timeline(42)
        assert _activity_count(42) == 0
        assert _activity_count(43) == 1
        assert db.session.query(CaseTimeline).count() == 1

    def test_purge_unknown_case_is_noop(self):
        assert engine.purge_case(404) == {"timeline": 0, "phases": 0, "activities": 0}
