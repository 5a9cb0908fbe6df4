"""
Intervention Scorer: ranks students who need teacher attention.

Read-only over an already-fetched roster snapshot:

  • Urgency ranking     weighted, explained signals (mastery, inactivity, priority)
  • Need assessment     system-set priority from mastery, recent accuracy and trend
  • KC overview         per-KC class mastery distribution

Nothing here mutates knowledge states, paths or responses, so it can run
alongside the tracer and sequencer at any time.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from masterypath.core.config import Settings, get_settings
from masterypath.core.timeutil import as_utc
from masterypath.services.curriculum import KnowledgeComponent
from masterypath.services.knowledge_tracer import KnowledgeState, Response

HIGH = "High"
MEDIUM = "Medium"
LOW = "Low"


# ═══════════════════════════════════════════════════════════════
# Policy
# ═══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class UrgencyPolicy:
    """Thresholds and weights for urgency scoring."""
    critical_mastery: float = 0.20
    critical_mastery_weight: float = 20.0
    very_low_mastery: float = 0.30
    very_low_mastery_weight: float = 15.0
    never_started_weight: float = 5.0
    inactive_days: int = 7
    inactive_weight: float = 15.0
    recently_inactive_days: int = 3
    recently_inactive_weight: float = 10.0
    high_priority_weight: float = 10.0
    high_bucket: float = 25.0
    medium_bucket: float = 10.0
    top_n: int = 5

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "UrgencyPolicy":
        s = settings or get_settings()
        return cls(
            critical_mastery=s.CRITICAL_MASTERY,
            critical_mastery_weight=s.CRITICAL_MASTERY_WEIGHT,
            very_low_mastery=s.VERY_LOW_MASTERY,
            very_low_mastery_weight=s.VERY_LOW_MASTERY_WEIGHT,
            never_started_weight=s.NEVER_STARTED_WEIGHT,
            inactive_days=s.INACTIVE_DAYS,
            inactive_weight=s.INACTIVE_WEIGHT,
            recently_inactive_days=s.RECENTLY_INACTIVE_DAYS,
            recently_inactive_weight=s.RECENTLY_INACTIVE_WEIGHT,
            high_priority_weight=s.HIGH_PRIORITY_WEIGHT,
            high_bucket=s.HIGH_URGENCY_SCORE,
            medium_bucket=s.MEDIUM_URGENCY_SCORE,
            top_n=s.INTERVENTION_TOP_N,
        )


# ═══════════════════════════════════════════════════════════════
# Data models
# ═══════════════════════════════════════════════════════════════

@dataclass
class StudentPerformance:
    """Aggregated, point-in-time view of one student."""
    student_id: str
    name: str
    p_mastery: float                              # average over the student's KCs
    last_active_at: Optional[datetime] = None     # None → never answered anything
    declared_priority: Optional[str] = None       # "High" | "Medium" | "Low"
    total_responses: int = 0


@dataclass
class UrgencyReason:
    code: str
    message: str
    points: float

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "points": self.points}


@dataclass
class InterventionRecord:
    student_id: str
    name: str
    urgency_score: float
    reasons: List[UrgencyReason] = field(default_factory=list)
    priority: str = LOW              # bucket derived from urgency_score

    def to_dict(self) -> Dict[str, Any]:
        return {
            "student_id": self.student_id,
            "name": self.name,
            "urgency_score": self.urgency_score,
            "priority": self.priority,
            "reasons": [r.to_dict() for r in self.reasons],
        }


@dataclass
class NeedAssessment:
    student_id: str
    score: Optional[float]           # None when there is too little history
    priority: Optional[str]          # None → no intervention needed
    mastery: float
    recent_accuracy: float = 0.0
    trend: float = 0.0
    struggling_kcs: List[str] = field(default_factory=list)

    @property
    def needs_intervention(self) -> bool:
        return self.priority is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "student_id": self.student_id,
            "score": self.score,
            "priority": self.priority,
            "needs_intervention": self.needs_intervention,
            "mastery": self.mastery,
            "recent_accuracy": self.recent_accuracy,
            "trend": self.trend,
            "struggling_kcs": list(self.struggling_kcs),
        }


@dataclass
class KCOverviewRow:
    kc_id: str
    name: str
    curriculum_code: Optional[str]
    student_count: int
    average_mastery: float
    distribution: Dict[str, int]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kc_id": self.kc_id,
            "name": self.name,
            "curriculum_code": self.curriculum_code,
            "student_count": self.student_count,
            "average_mastery": self.average_mastery,
            "distribution": dict(self.distribution),
        }


MASTERY_BANDS = ("0-20", "20-40", "40-60", "60-80", "80-100")


def _band(p_mastery: float) -> str:
    return MASTERY_BANDS[min(max(int(p_mastery * 5), 0), 4)]


def _slope(values: Sequence[float]) -> float:
    """Least-squares slope of ``values`` against their index."""
    n = len(values)
    if n < 3:
        return 0.0
    sum_x = n * (n - 1) / 2
    sum_y = sum(values)
    sum_xy = sum(i * y for i, y in enumerate(values))
    sum_xx = sum(i * i for i in range(n))
    return (n * sum_xy - sum_x * sum_y) / (n * sum_xx - sum_x * sum_x)


# ═══════════════════════════════════════════════════════════════
# InterventionScorer
# ═══════════════════════════════════════════════════════════════

class InterventionScorer:
    """
    Urgency ranking for the teacher dashboard.

    ``now`` is taken as an argument everywhere so a snapshot always scores
    the same way; callers pass the time the snapshot was read. Naive
    datetimes, in ``now`` or in the snapshot, are read as UTC.
    """

    def __init__(self, policy: Optional[UrgencyPolicy] = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.policy = policy or UrgencyPolicy.from_settings(self.settings)

    # ── Urgency ───────────────────────────────────────────────────

    def score(self, student: StudentPerformance, now: Optional[datetime] = None) -> InterventionRecord:
        now = as_utc(now)
        policy = self.policy
        reasons: List[UrgencyReason] = []

        if student.p_mastery < policy.critical_mastery:
            reasons.append(UrgencyReason(
                "critical_mastery",
                f"Critical mastery level (< {policy.critical_mastery:.0%})",
                policy.critical_mastery_weight,
            ))
        elif student.p_mastery < policy.very_low_mastery:
            reasons.append(UrgencyReason(
                "very_low_mastery",
                f"Very low mastery level (< {policy.very_low_mastery:.0%})",
                policy.very_low_mastery_weight,
            ))

        if student.last_active_at is None:
            reasons.append(UrgencyReason(
                "never_started",
                "Student has not started any quizzes yet",
                policy.never_started_weight,
            ))
        else:
            days = math.floor((now - as_utc(student.last_active_at)).total_seconds() / 86400)
            if days > policy.inactive_days:
                reasons.append(UrgencyReason("inactive", f"Inactive for {days} days", policy.inactive_weight))
            elif days > policy.recently_inactive_days:
                reasons.append(UrgencyReason(
                    "recently_inactive", f"Inactive for {days} days", policy.recently_inactive_weight,
                ))

        if student.declared_priority == HIGH:
            reasons.append(UrgencyReason(
                "high_priority",
                "High priority intervention needed",
                policy.high_priority_weight,
            ))

        total = sum(r.points for r in reasons)
        if total >= policy.high_bucket:
            bucket = HIGH
        elif total >= policy.medium_bucket:
            bucket = MEDIUM
        else:
            bucket = LOW

        return InterventionRecord(
            student_id=student.student_id,
            name=student.name,
            urgency_score=total,
            reasons=reasons,
            priority=bucket,
        )

    def rank(
        self,
        students: Iterable[StudentPerformance],
        now: Optional[datetime] = None,
    ) -> List[InterventionRecord]:
        """Full ranked list: score descending, then name, then id."""
        now = as_utc(now)
        records = [self.score(s, now) for s in students]
        records.sort(key=lambda r: (-r.urgency_score, r.name or "", r.student_id))
        return records

    def urgent(
        self,
        students: Iterable[StudentPerformance],
        top_n: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> List[InterventionRecord]:
        """The "urgent" dashboard view: top-N students with a non-zero score."""
        if top_n is None:
            top_n = self.policy.top_n
        ranked = [r for r in self.rank(students, now) if r.urgency_score > 0]
        return ranked[:max(top_n, 0)]

    # ── Need assessment ───────────────────────────────────────────

    def assess_need(
        self,
        student_id: str,
        states: Sequence[KnowledgeState],
        responses: Sequence[Response],
    ) -> NeedAssessment:
        """
        System-set intervention priority.

        Needs a minimum amount of history; below that the student is left
        unassessed rather than flagged. ``responses`` may be in any order.
        """
        s = self.settings
        mastery = sum(st.p_mastery for st in states) / len(states) if states else 0.0
        struggling = [
            st.kc_id for st in sorted(states, key=lambda st: (st.p_mastery, st.kc_id))
            if st.p_mastery < s.NEED_LOW_BELOW
        ][:3]

        if len(responses) < s.NEED_MIN_RESPONSES:
            return NeedAssessment(student_id, None, None, mastery, struggling_kcs=struggling)

        recent = sorted(responses, key=lambda r: as_utc(r.timestamp))[-s.NEED_RECENT_WINDOW:]
        results = [1.0 if r.correct else 0.0 for r in recent]
        accuracy = sum(results) / len(results)
        trend = _slope(results)
        trend_score = min(max(trend + 0.5, 0.0), 1.0)

        score = (
            s.NEED_MASTERY_WEIGHT * mastery
            + s.NEED_ACCURACY_WEIGHT * accuracy
            + s.NEED_TREND_WEIGHT * trend_score
        )
        if score < s.NEED_HIGH_BELOW:
            priority = HIGH
        elif score < s.NEED_MEDIUM_BELOW:
            priority = MEDIUM
        elif score < s.NEED_LOW_BELOW:
            priority = LOW
        else:
            priority = None

        return NeedAssessment(
            student_id=student_id,
            score=score,
            priority=priority,
            mastery=mastery,
            recent_accuracy=accuracy,
            trend=trend,
            struggling_kcs=struggling,
        )

    def summarize_student(
        self,
        student_id: str,
        name: str,
        states: Sequence[KnowledgeState],
        responses: Sequence[Response],
        declared_priority: Optional[str] = None,
    ) -> StudentPerformance:
        """Build the roster row the ranking consumes. A teacher-set priority wins."""
        need = self.assess_need(student_id, states, responses)
        last_active = max((as_utc(r.timestamp) for r in responses), default=None)
        return StudentPerformance(
            student_id=student_id,
            name=name,
            p_mastery=need.mastery,
            last_active_at=last_active,
            declared_priority=declared_priority or need.priority,
            total_responses=len(responses),
        )

    # ── Class overview ────────────────────────────────────────────

    def kc_overview(
        self,
        components: Iterable[KnowledgeComponent],
        states: Iterable[KnowledgeState],
    ) -> List[KCOverviewRow]:
        by_kc: Dict[str, List[float]] = {}
        for st in states:
            by_kc.setdefault(st.kc_id, []).append(st.p_mastery)

        rows = []
        for kc in components:
            masteries = by_kc.get(kc.kc_id, [])
            distribution = {band: 0 for band in MASTERY_BANDS}
            for p in masteries:
                distribution[_band(p)] += 1
            rows.append(KCOverviewRow(
                kc_id=kc.kc_id,
                name=kc.name,
                curriculum_code=kc.curriculum_code,
                student_count=len(masteries),
                average_mastery=sum(masteries) / len(masteries) if masteries else 0.0,
                distribution=distribution,
            ))
        rows.sort(key=lambda r: (r.curriculum_code is None, r.curriculum_code or "", r.kc_id))
        return rows


# ── Singleton ─────────────────────────────────────────────────────
_scorer: Optional[InterventionScorer] = None


def get_intervention_scorer() -> InterventionScorer:
    global _scorer
    if _scorer is None:
        _scorer = InterventionScorer()
    return _scorer
