"""
Knowledge Tracer: Bayesian Knowledge Tracing for one student–KC pair.

Pure update math plus the small state object it mutates:

  bkt_update()      → one forward step (evidence + learning transition)
  update()          → same step driven by a BKTParams quadruple
  KnowledgeTracer   → seeds states from a KC's pL0 and applies responses
  explain_update()  → human-readable summary for dashboards

No I/O happens here. Callers fetch the KnowledgeState, hand it in together
with the Response, and persist the mutated state afterwards.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import List, Optional, Tuple

from masterypath.core.config import get_settings

logger = logging.getLogger("masterypath.tracer")


# ═══════════════════════════════════════════════
# Data Models
# ═══════════════════════════════════════════════

@dataclass(frozen=True)
class BKTParams:
    """BKT parameter quadruple for a knowledge component"""
    p_L0: float = 0.3   # Initial mastery (only used to seed a new state)
    p_T: float = 0.09   # Probability of learning (transition)
    p_S: float = 0.1    # Probability of slip (knows but wrong)
    p_G: float = 0.2    # Probability of guess (doesn't know but right)

    @classmethod
    def defaults(cls) -> "BKTParams":
        settings = get_settings()
        return cls(
            p_L0=settings.BKT_DEFAULT_P_L0,
            p_T=settings.BKT_DEFAULT_P_T,
            p_S=settings.BKT_DEFAULT_P_S,
            p_G=settings.BKT_DEFAULT_P_G,
        )

    def validated(self) -> Tuple["BKTParams", List[str]]:
        """
        Clamp every probability into [0, 1].

        Returns the (possibly) corrected quadruple and the names of the
        fields that had to be clamped. A bad quadruple never blocks an
        update; it is corrected and reported.
        """
        clamped = {}
        problems = []
        for name in ("p_L0", "p_T", "p_S", "p_G"):
            value = getattr(self, name)
            fixed = _clamp(value)
            if fixed != value:
                problems.append(name)
            clamped[name] = fixed
        if problems:
            logger.warning("BKT parameters out of range, clamped: %s (%s)", problems, self)
        return BKTParams(**clamped), problems

    def as_dict(self) -> dict:
        return {"p_L0": self.p_L0, "p_T": self.p_T, "p_S": self.p_S, "p_G": self.p_G}


@dataclass(frozen=True)
class Response:
    """One scored attempt. Append-only; ordering by timestamp matters."""
    student_id: str
    content_item_id: str
    kc_id: str
    correct: bool
    timestamp: datetime
    latency_ms: Optional[int] = None


@dataclass
class KnowledgeState:
    """Mastery state for one (student, KC) pair"""
    student_id: str
    kc_id: str
    p_mastery: float
    params: BKTParams
    attempts: int = 0
    correct_count: int = 0
    last_response_at: Optional[datetime] = None

    @property
    def accuracy(self) -> float:
        return self.correct_count / self.attempts if self.attempts else 0.0


@dataclass
class TraceResult:
    """Outcome of applying one response to a knowledge state"""
    student_id: str
    kc_id: str
    old_mastery: float
    new_mastery: float
    correct: bool
    mastered: bool
    degenerate: bool = False
    clamped_params: List[str] = field(default_factory=list)
    explanation: str = ""

    @property
    def delta(self) -> float:
        return self.new_mastery - self.old_mastery


# ═══════════════════════════════════════════════
# Core BKT Algorithm
# ═══════════════════════════════════════════════

def _clamp(value: float) -> float:
    return min(max(value, 0.0), 1.0)


def bkt_update(
    p_L: float,
    correct: bool,
    p_T: float = 0.09,
    p_S: float = 0.1,
    p_G: float = 0.2
) -> float:
    """
    One Bayesian Knowledge Tracing update step.

    p_L : prior mastery probability  (0.0 – 1.0)
    correct : True if student answered correctly
    p_T : probability of learning (transition)
    p_S : slip probability (knows but answers wrong)
    p_G : guess probability (doesn't know but answers right)

    Returns: updated mastery probability
    """
    posterior, _ = _evidence_step(p_L, correct, p_S, p_G)
    return _learning_step(posterior, p_T)


def _evidence_step(p_L: float, correct: bool, p_S: float, p_G: float) -> Tuple[float, bool]:
    # Bayesian posterior update
    if correct:
        numerator = p_L * (1 - p_S)
        denominator = numerator + (1 - p_L) * p_G
    else:
        numerator = p_L * p_S
        denominator = numerator + (1 - p_L) * (1 - p_G)

    if denominator == 0:
        logger.warning(
            "Degenerate BKT evidence step (p_L=%.4f, p_S=%.4f, p_G=%.4f, correct=%s); "
            "keeping prior", p_L, p_S, p_G, correct,
        )
        return p_L, True
    return numerator / denominator, False


def _learning_step(posterior: float, p_T: float) -> float:
    # Learning transition, then clamp
    return _clamp(posterior + (1 - posterior) * p_T)


def update(prior: float, correct: bool, params: BKTParams) -> float:
    """Posterior mastery after one response, using a full parameter quadruple."""
    return _trace(prior, correct, params)[0]


def _trace(prior: float, correct: bool, params: BKTParams) -> Tuple[float, bool, List[str]]:
    safe_params, clamped = params.validated()
    if not 0.0 <= prior <= 1.0:
        logger.warning("Prior mastery %.4f outside [0, 1], clamped", prior)
        prior = _clamp(prior)
    posterior, degenerate = _evidence_step(prior, correct, safe_params.p_S, safe_params.p_G)
    return _learning_step(posterior, safe_params.p_T), degenerate, clamped


def is_mastered(p_mastery: float, threshold: Optional[float] = None) -> bool:
    if threshold is None:
        threshold = get_settings().MASTERY_THRESHOLD
    return p_mastery >= threshold


# ═══════════════════════════════════════════════
# Explainability
# ═══════════════════════════════════════════════

def explain_update(
    old_mastery: float,
    new_mastery: float,
    correct: bool,
    threshold: float,
    degenerate: bool = False,
) -> str:
    """Generate a short explanation of a mastery update for the teacher dashboard."""
    explanations: List[str] = []

    if degenerate:
        explanations.append("Parameters made this answer uninformative; estimate unchanged by evidence.")
    explanations.append("Answered correctly." if correct else "Answered incorrectly.")

    delta = new_mastery - old_mastery
    if delta > 0.05:
        explanations.append("Student mastery improved significantly.")
    elif delta > 0:
        explanations.append("Student mastery improved gradually.")
    elif delta < 0:
        explanations.append("Student mastery estimate dropped.")
    else:
        explanations.append("No mastery change observed in this attempt.")

    if old_mastery < threshold <= new_mastery:
        explanations.append("Mastery threshold reached.")

    return " ".join(explanations)


# ═══════════════════════════════════════════════
# Tracer
# ═══════════════════════════════════════════════

class KnowledgeTracer:
    """
    Applies BKT updates to KnowledgeState objects.

    The tracer is the only writer of ``p_mastery``. Ordering of responses for
    a (student, KC) pair is the caller's job; see ``MemoryStore``.
    """

    def __init__(self, mastery_threshold: Optional[float] = None):
        if mastery_threshold is None:
            mastery_threshold = get_settings().MASTERY_THRESHOLD
        self.mastery_threshold = mastery_threshold

    def seed_state(
        self,
        student_id: str,
        kc_id: str,
        params: BKTParams,
        existing: Optional[KnowledgeState] = None,
    ) -> KnowledgeState:
        """
        Create the state for a first exposure, seeded from ``params.p_L0``.

        Seeding is idempotent: an existing state is returned untouched so an
        already-progressed estimate is never reset.
        """
        if existing is not None:
            return existing
        safe_params, _ = params.validated()
        return KnowledgeState(
            student_id=student_id,
            kc_id=kc_id,
            p_mastery=safe_params.p_L0,
            params=replace(safe_params),
        )

    def apply(self, state: KnowledgeState, response: Response) -> TraceResult:
        """Run one BKT step for ``response`` and write the result into ``state``."""
        old_mastery = state.p_mastery
        new_mastery, degenerate, clamped = _trace(old_mastery, response.correct, state.params)

        state.p_mastery = new_mastery
        state.attempts += 1
        if response.correct:
            state.correct_count += 1
        state.last_response_at = response.timestamp

        return TraceResult(
            student_id=state.student_id,
            kc_id=state.kc_id,
            old_mastery=old_mastery,
            new_mastery=new_mastery,
            correct=response.correct,
            mastered=is_mastered(new_mastery, self.mastery_threshold),
            degenerate=degenerate,
            clamped_params=clamped,
            explanation=explain_update(
                old_mastery, new_mastery, response.correct,
                self.mastery_threshold, degenerate,
            ),
        )

    def is_mastered(self, state: KnowledgeState) -> bool:
        return is_mastered(state.p_mastery, self.mastery_threshold)
