"""
Intervention Scorer Tests

Tests:
  - Each urgency signal contributes its weight and reason, in evaluation order
  - Ranking is by score, ties broken by name, deterministic for a snapshot
  - Top-N truncation of the urgent view; empty roster degrades to []
  - Need assessment (system-set priority) and teacher-set priority precedence
  - Per-KC class overview bands
  - Naive timestamps score as UTC, with or without an explicit now
"""
from datetime import datetime, timedelta, timezone

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from masterypath.core.config import Settings
from masterypath.services.intervention_scorer import (
    HIGH,
    LOW,
    MEDIUM,
    InterventionScorer,
    StudentPerformance,
    UrgencyPolicy,
)
from masterypath.services.knowledge_tracer import BKTParams, KnowledgeState, Response
from tests.conftest import make_kc

NOW = datetime(2024, 5, 20, 12, 0, tzinfo=timezone.utc)


def _student(student_id, name=None, p_mastery=0.6, days_ago=1.0, priority=None):
    return StudentPerformance(
        student_id=student_id,
        name=name or student_id.title(),
        p_mastery=p_mastery,
        last_active_at=None if days_ago is None else NOW - timedelta(days=days_ago),
        declared_priority=priority,
    )


def _responses(results, kc_id="fractions", student_id="s1"):
    return [
        Response(student_id, f"item-{i}", kc_id, correct, NOW - timedelta(hours=len(results) - i))
        for i, correct in enumerate(results)
    ]


def _states(*masteries, student_id="s1"):
    return [
        KnowledgeState(student_id=student_id, kc_id=f"kc{i}", p_mastery=p, params=BKTParams())
        for i, p in enumerate(masteries)
    ]


@pytest.fixture
def scorer():
    return InterventionScorer(policy=UrgencyPolicy())


# ═══════════════════════════════════════════════════════════════
# Urgency score
# ═══════════════════════════════════════════════════════════════

class TestUrgencyScore:

    def test_critical_and_never_started(self, scorer):
        record = scorer.score(_student("s1", p_mastery=0.15, days_ago=None), NOW)
        assert [r.code for r in record.reasons] == ["critical_mastery", "never_started"]
        assert record.urgency_score == 25
        assert record.priority == HIGH
        assert record.reasons[1].message == "Student has not started any quizzes yet"

    def test_very_low_mastery(self, scorer):
        record = scorer.score(_student("s1", p_mastery=0.25), NOW)
        assert [r.message for r in record.reasons] == ["Very low mastery level (< 30%)"]
        assert record.urgency_score == 15
        assert record.priority == MEDIUM

    def test_critical_message(self, scorer):
        record = scorer.score(_student("s1", p_mastery=0.1), NOW)
        assert record.reasons[0].message == "Critical mastery level (< 20%)"

    def test_long_inactivity_beats_short(self, scorer):
        long_gap = scorer.score(_student("s1", days_ago=10.5), NOW)
        short_gap = scorer.score(_student("s2", days_ago=5), NOW)
        assert long_gap.reasons[0].message == "Inactive for 10 days"
        assert long_gap.urgency_score == 15
        assert short_gap.urgency_score == 10

    def test_boundaries_are_strict(self, scorer):
        assert scorer.score(_student("s1", days_ago=3), NOW).urgency_score == 0
        assert scorer.score(_student("s1", days_ago=7), NOW).urgency_score == 10
        assert scorer.score(_student("s1", p_mastery=0.30), NOW).urgency_score == 0
        assert scorer.score(_student("s1", p_mastery=0.20), NOW).urgency_score == 15

    def test_declared_high_priority_adds_weight(self, scorer):
        record = scorer.score(_student("s1", priority=HIGH), NOW)
        assert record.reasons[-1].message == "High priority intervention needed"
        assert record.urgency_score == 10
        assert scorer.score(_student("s1", priority=MEDIUM), NOW).urgency_score == 0

    def test_reasons_in_evaluation_order(self, scorer):
        record = scorer.score(_student("s1", p_mastery=0.1, days_ago=30, priority=HIGH), NOW)
        assert [r.code for r in record.reasons] == ["critical_mastery", "inactive", "high_priority"]
        assert record.urgency_score == 45

    def test_on_track_student_is_low(self, scorer):
        record = scorer.score(_student("s1"), NOW)
        assert record.reasons == []
        assert record.priority == LOW

    def test_policy_is_tunable(self):
        policy = UrgencyPolicy(critical_mastery=0.5, critical_mastery_weight=99)
        record = InterventionScorer(policy=policy).score(_student("s1", p_mastery=0.45), NOW)
        assert record.urgency_score == 99
        assert record.reasons[0].message == "Critical mastery level (< 50%)"

    def test_policy_from_settings(self):
        policy = UrgencyPolicy.from_settings(Settings(INACTIVE_DAYS=14, INTERVENTION_TOP_N=3))
        assert policy.inactive_days == 14
        assert policy.top_n == 3
        assert policy.critical_mastery == 0.20


# ═══════════════════════════════════════════════════════════════
# Ranking
# ═══════════════════════════════════════════════════════════════

class TestRanking:

    def test_ties_break_by_name(self, scorer):
        bob = _student("s2", name="Bob", p_mastery=0.1)
        alice = _student("s1", name="Alice", p_mastery=0.1)
        ranked = scorer.rank([bob, alice], NOW)
        assert [r.name for r in ranked] == ["Alice", "Bob"]

    def test_sorted_by_score_descending(self, scorer):
        roster = [
            _student("ok", p_mastery=0.8),
            _student("crit", p_mastery=0.1, days_ago=None),
            _student("low", p_mastery=0.25),
        ]
        assert [r.student_id for r in scorer.rank(roster, NOW)] == ["crit", "low", "ok"]

    def test_empty_snapshot(self, scorer):
        assert scorer.rank([], NOW) == []
        assert scorer.urgent([], now=NOW) == []

    def test_urgent_view_truncates_to_top_n(self, scorer):
        roster = [_student(f"s{i}", p_mastery=0.05 * i) for i in range(8)]
        assert len(scorer.urgent(roster, now=NOW)) == 5
        assert len(scorer.urgent(roster, top_n=2, now=NOW)) == 2
        assert len(scorer.rank(roster, NOW)) == 8

    def test_urgent_view_skips_students_with_nothing_flagged(self, scorer):
        roster = [_student("fine", p_mastery=0.9), _student("low", p_mastery=0.1)]
        assert [r.student_id for r in scorer.urgent(roster, now=NOW)] == ["low"]

    def test_record_serializes(self, scorer):
        payload = scorer.score(_student("s1", p_mastery=0.1), NOW).to_dict()
        assert payload["priority"] == MEDIUM
        assert payload["reasons"][0] == {
            "code": "critical_mastery",
            "message": "Critical mastery level (< 20%)",
            "points": 20.0,
        }


@settings(max_examples=100, deadline=None)
@given(
    roster=st.lists(
        st.tuples(
            st.sampled_from(["Alice", "Bob", "Chen", "Dana"]),
            st.floats(min_value=0.0, max_value=1.0),
            st.one_of(st.none(), st.integers(min_value=0, max_value=30)),
        ),
        max_size=12,
    )
)
def test_rank_is_deterministic_for_a_snapshot(roster):
    scorer = InterventionScorer(policy=UrgencyPolicy())
    students = [
        _student(f"s{i}", name=name, p_mastery=p, days_ago=days)
        for i, (name, p, days) in enumerate(roster)
    ]
    first = scorer.rank(students, NOW)
    again = scorer.rank(list(reversed(students)), NOW)
    assert [r.student_id for r in first] == [r.student_id for r in again]
    keys = [(-r.urgency_score, r.name) for r in first]
    assert keys == sorted(keys)


# ═══════════════════════════════════════════════════════════════
# Timestamps
# ═══════════════════════════════════════════════════════════════

class TestTimestamps:

    def test_rank_with_naive_last_active(self):
        student = StudentPerformance("s1", "Ann", 0.5, last_active_at=datetime(2024, 1, 1))
        ranked = InterventionScorer(policy=UrgencyPolicy()).rank([student])
        assert [r.code for r in ranked[0].reasons] == ["inactive"]
        assert ranked[0].urgency_score == 15

    def test_naive_last_active_read_as_utc(self, scorer):
        student = StudentPerformance("s1", "Ann", 0.6, last_active_at=datetime(2024, 5, 10, 12, 0))
        record = scorer.score(student, NOW)
        assert record.reasons[0].message == "Inactive for 10 days"

    def test_naive_now_with_aware_last_active(self, scorer):
        record = scorer.score(_student("s1", days_ago=5), datetime(2024, 5, 20, 12, 0))
        assert [r.code for r in record.reasons] == ["recently_inactive"]
        assert record.urgency_score == 10

    def test_other_offsets_are_converted(self, scorer):
        plus_five = timezone(timedelta(hours=5))
        # 17:00 at +05:00 is 12:00 UTC, four days before NOW
        student = StudentPerformance("s1", "Ann", 0.6, last_active_at=datetime(2024, 5, 16, 17, 0, tzinfo=plus_five))
        assert scorer.score(student, NOW).reasons[0].message == "Inactive for 4 days"

    def test_now_defaults_to_current_time(self, scorer):
        current = datetime.now(timezone.utc)
        idle = StudentPerformance("idle", "Idle", 0.6, last_active_at=current - timedelta(days=10, hours=1))
        active = StudentPerformance("active", "Active", 0.6, last_active_at=current - timedelta(hours=2))
        naive_idle = StudentPerformance(
            "naive", "Naive", 0.6, last_active_at=(current - timedelta(days=5)).replace(tzinfo=None),
        )

        assert [r.code for r in scorer.score(idle).reasons] == ["inactive"]
        assert scorer.score(active).urgency_score == 0
        assert [r.student_id for r in scorer.urgent([active, idle, naive_idle])] == ["idle", "naive"]

    def test_summary_with_mixed_timestamps(self, scorer):
        responses = [
            Response("s1", "item-0", "fractions", True, NOW - timedelta(hours=3)),
            Response("s1", "item-1", "fractions", True, datetime(2024, 5, 20, 11, 0)),
        ]
        perf = scorer.summarize_student("s1", "Alice", _states(0.5), responses)
        assert perf.last_active_at == datetime(2024, 5, 20, 11, 0, tzinfo=timezone.utc)
        assert scorer.score(perf, NOW).urgency_score == 0

    def test_need_assessment_orders_mixed_timestamps(self, scorer):
        responses = _responses([False] * 9)
        responses.append(Response("s1", "item-late", "fractions", True, datetime(2024, 5, 20, 11, 59)))
        need = scorer.assess_need("s1", _states(0.5), responses)
        assert need.trend > 0


# ═══════════════════════════════════════════════════════════════
# Need assessment
# ═══════════════════════════════════════════════════════════════

class TestNeedAssessment:

    def test_too_little_history(self, scorer):
        need = scorer.assess_need("s1", _states(0.1), _responses([False] * 4))
        assert need.score is None
        assert need.priority is None
        assert not need.needs_intervention

    def test_struggling_student_is_high(self, scorer):
        need = scorer.assess_need("s1", _states(0.1), _responses([False] * 10))
        # 0.4 * 0.1 + 0.4 * 0.0 + 0.2 * 0.5
        assert need.score == pytest.approx(0.14)
        assert need.priority == HIGH
        assert need.struggling_kcs == ["kc0"]

    def test_strong_student_needs_nothing(self, scorer):
        need = scorer.assess_need("s1", _states(0.95), _responses([True] * 10))
        assert need.score == pytest.approx(0.88)
        assert need.priority is None

    def test_improving_trend_raises_score(self, scorer):
        improving = scorer.assess_need("s1", _states(0.4), _responses([False] * 5 + [True] * 5))
        declining = scorer.assess_need("s1", _states(0.4), _responses([True] * 5 + [False] * 5))
        assert improving.trend > 0 > declining.trend
        assert improving.score > declining.score

    def test_only_recent_window_counts(self, scorer):
        history = _responses([False] * 20 + [True] * 10)
        need = scorer.assess_need("s1", _states(0.5), history)
        assert need.recent_accuracy == pytest.approx(1.0)

    def test_medium_and_low_bands(self, scorer):
        # alternating answers: accuracy 0.5, slightly negative trend
        results = [True, False] * 5
        assert scorer.assess_need("s1", _states(0.5), _responses(results)).priority in (LOW, MEDIUM)
        assert scorer.assess_need("s1", _states(0.3), _responses(results)).priority == MEDIUM

    def test_struggling_kcs_weakest_first(self, scorer):
        need = scorer.assess_need("s1", _states(0.6, 0.2, 0.9, 0.1, 0.5), [])
        assert need.struggling_kcs == ["kc3", "kc1", "kc4"]

    def test_summary_uses_system_priority(self, scorer):
        perf = scorer.summarize_student("s1", "Alice", _states(0.1), _responses([False] * 10))
        assert perf.declared_priority == HIGH
        assert perf.p_mastery == pytest.approx(0.1)
        assert perf.last_active_at == NOW - timedelta(hours=1)
        assert perf.total_responses == 10

    def test_teacher_priority_wins(self, scorer):
        perf = scorer.summarize_student("s1", "Alice", _states(0.1), _responses([False] * 10), declared_priority=LOW)
        assert perf.declared_priority == LOW

    def test_no_activity_summary(self, scorer):
        perf = scorer.summarize_student("s1", "Alice", [], [])
        assert perf.last_active_at is None
        assert perf.p_mastery == 0.0


# ═══════════════════════════════════════════════════════════════
# KC overview
# ═══════════════════════════════════════════════════════════════

class TestKCOverview:

    def test_bands_and_average(self, scorer):
        components = [make_kc("fractions", code="M.2"), make_kc("counting", code="M.1"), make_kc("draft")]
        states = [
            KnowledgeState("s1", "fractions", 0.1, BKTParams()),
            KnowledgeState("s2", "fractions", 0.5, BKTParams()),
            KnowledgeState("s3", "fractions", 1.0, BKTParams()),
        ]
        rows = scorer.kc_overview(components, states)

        assert [r.kc_id for r in rows] == ["counting", "fractions", "draft"]
        fractions = rows[1]
        assert fractions.student_count == 3
        assert fractions.average_mastery == pytest.approx(1.6 / 3)
        assert fractions.distribution == {"0-20": 1, "20-40": 0, "40-60": 1, "60-80": 0, "80-100": 1}
        assert rows[0].student_count == 0
        assert rows[0].average_mastery == 0.0
