"""
Path Sequencer: per-student learning paths over the curriculum graph.

Each path entry moves one way only:

    pending ──(selected, prerequisites completed)──▶ in_progress
    in_progress ──(p_mastery ≥ threshold)──▶ completed

  next_step()   → which KC the student should work on now (pure)
  advance()     → completion check + selection, mutating the path
  reconcile()   → fold new / changed KCs into a path, idempotently
  create_path() → first path for a student, scoped by grade level
  supersede()   → archive a path and start a fresh one, keeping completions

Cycles in the prerequisite graph are a content-authoring error. They are
reported per affected subgraph while the rest of the path still reconciles.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional

from masterypath.core.config import get_settings
from masterypath.core.errors import InvalidTransitionError
from masterypath.core.timeutil import utcnow
from masterypath.services.curriculum import CurriculumGraph, CycleReport
from masterypath.services.knowledge_tracer import KnowledgeState

logger = logging.getLogger("masterypath.sequencer")


# ═══════════════════════════════════════════════════════════════
# Path data model
# ═══════════════════════════════════════════════════════════════

class EntryStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


_STATUS_RANK = {
    EntryStatus.PENDING: 0,
    EntryStatus.IN_PROGRESS: 1,
    EntryStatus.COMPLETED: 2,
}


class PathStatus(str, Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


class AdvanceOutcome(str, Enum):
    IN_PROGRESS = "in_progress"      # a KC is selected
    COMPLETE = "complete"            # every entry completed
    BLOCKED = "blocked"              # remaining entries wait on prerequisites
    EMPTY = "empty"                  # nothing on the path


@dataclass
class PathEntry:
    kc_id: str
    status: EntryStatus = EntryStatus.PENDING
    updated_at: Optional[datetime] = None

    def move_to(self, status: EntryStatus, at: Optional[datetime] = None) -> bool:
        """Forward-only transition. Returns False when already in ``status``."""
        if _STATUS_RANK[status] < _STATUS_RANK[self.status]:
            raise InvalidTransitionError(
                f"{self.kc_id}: cannot move from {self.status.value} back to {status.value}"
            )
        if status == self.status:
            return False
        self.status = status
        self.updated_at = at or utcnow()
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kc_id": self.kc_id,
            "status": self.status.value,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class LearningPath:
    student_id: str
    entries: List[PathEntry] = field(default_factory=list)
    status: PathStatus = PathStatus.ACTIVE
    grade_level: Optional[int] = None
    path_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=utcnow)

    def entry(self, kc_id: str) -> Optional[PathEntry]:
        for e in self.entries:
            if e.kc_id == kc_id:
                return e
        return None

    def kc_ids(self) -> List[str]:
        return [e.kc_id for e in self.entries]

    def statuses(self) -> Dict[str, EntryStatus]:
        return {e.kc_id: e.status for e in self.entries}

    @property
    def is_complete(self) -> bool:
        return bool(self.entries) and all(e.status == EntryStatus.COMPLETED for e in self.entries)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path_id": self.path_id,
            "student_id": self.student_id,
            "status": self.status.value,
            "grade_level": self.grade_level,
            "created_at": self.created_at.isoformat(),
            "entries": [e.to_dict() for e in self.entries],
        }


# ═══════════════════════════════════════════════════════════════
# Results
# ═══════════════════════════════════════════════════════════════

@dataclass
class AdvanceResult:
    path: LearningPath
    next_kc_id: Optional[str]
    changed: List[PathEntry] = field(default_factory=list)
    outcome: AdvanceOutcome = AdvanceOutcome.IN_PROGRESS

    @property
    def caught_up(self) -> bool:
        return self.next_kc_id is None

    @property
    def message(self) -> str:
        if self.outcome == AdvanceOutcome.IN_PROGRESS:
            return f"Next up: {self.next_kc_id}"
        if self.outcome == AdvanceOutcome.COMPLETE:
            return "All caught up! Learning path complete."
        if self.outcome == AdvanceOutcome.BLOCKED:
            return "All caught up for now. Remaining topics are waiting on prerequisite content."
        return "All caught up. No topics are on this learning path yet."


@dataclass
class ReconcileResult:
    path: LearningPath
    added: List[str] = field(default_factory=list)
    rejected: List[CycleReport] = field(default_factory=list)
    retroactive: List[str] = field(default_factory=list)   # new prerequisites of already-started KCs

    @property
    def changed(self) -> bool:
        return bool(self.added)


# ═══════════════════════════════════════════════════════════════
# PathSequencer
# ═══════════════════════════════════════════════════════════════

class PathSequencer:
    """
    Sequencing policy over one curriculum graph.

    ``states`` arguments map kc_id → KnowledgeState for a single student.
    Missing states are fine: a KC the student never saw is simply not
    mastered, and in-progress ranking falls back to the KC's pL0.
    """

    def __init__(self, curriculum: CurriculumGraph, mastery_threshold: Optional[float] = None):
        if mastery_threshold is None:
            mastery_threshold = get_settings().MASTERY_THRESHOLD
        self.curriculum = curriculum
        self.mastery_threshold = mastery_threshold

    # ── Helpers ───────────────────────────────────────────────────

    def _mastery(self, kc_id: str, states: Mapping[str, KnowledgeState]) -> float:
        state = states.get(kc_id)
        if state is not None:
            return state.p_mastery
        kc = self.curriculum.find(kc_id)
        return kc.params.p_L0 if kc is not None else 0.0

    def _is_mastered(self, kc_id: str, states: Mapping[str, KnowledgeState]) -> bool:
        state = states.get(kc_id)
        return state is not None and state.p_mastery >= self.mastery_threshold

    def is_eligible(
        self,
        kc_id: str,
        statuses: Mapping[str, EntryStatus],
        states: Mapping[str, KnowledgeState],
    ) -> bool:
        """
        Every prerequisite is completed on the path. A prerequisite that is
        not on the path at all (outside the student's scope) counts only if
        the student has already mastered it.
        """
        for prereq in self.curriculum.prerequisites(kc_id):
            status = statuses.get(prereq)
            if status == EntryStatus.COMPLETED:
                continue
            if status is None and self._is_mastered(prereq, states):
                continue
            return False
        return True

    # ── Selection ─────────────────────────────────────────────────

    def next_step(
        self,
        path: LearningPath,
        states: Mapping[str, KnowledgeState],
    ) -> Optional[str]:
        """
        The KC the student should work on now, or None when nothing is
        eligible. Resumes the weakest in-progress KC first, otherwise picks
        the earliest eligible pending KC in curriculum order.
        """
        statuses = path.statuses()

        in_progress = [
            e.kc_id for e in path.entries
            if e.status == EntryStatus.IN_PROGRESS
            and e.kc_id in self.curriculum
            and self.is_eligible(e.kc_id, statuses, states)
        ]
        if in_progress:
            return min(
                in_progress,
                key=lambda k: (self._mastery(k, states), self.curriculum.order_key(k)),
            )

        pending = [
            e.kc_id for e in path.entries
            if e.status == EntryStatus.PENDING
            and e.kc_id in self.curriculum
            and self.curriculum.get(e.kc_id).is_active
            and self.is_eligible(e.kc_id, statuses, states)
        ]
        if pending:
            return min(pending, key=self.curriculum.order_key)
        return None

    def advance(
        self,
        path: LearningPath,
        states: Mapping[str, KnowledgeState],
        now: Optional[datetime] = None,
    ) -> AdvanceResult:
        """
        Complete in-progress KCs whose mastery crossed the threshold, then
        start the next KC. A selected KC that is already mastered is taken
        through in_progress to completed straight away and selection repeats.

        An in-progress KC completes only once it is eligible, so a
        prerequisite reconciled in after the KC was started holds it back.
        """
        now = now or utcnow()
        changed: Dict[str, PathEntry] = {}

        while True:
            for e in path.entries:
                if e.status != EntryStatus.IN_PROGRESS or not self._is_mastered(e.kc_id, states):
                    continue
                if self.is_eligible(e.kc_id, path.statuses(), states):
                    e.move_to(EntryStatus.COMPLETED, now)
                    changed[e.kc_id] = e
                    logger.info("Student %s completed %s", path.student_id, e.kc_id)

            next_kc = self.next_step(path, states)
            if next_kc is None:
                break

            entry = path.entry(next_kc)
            if entry.move_to(EntryStatus.IN_PROGRESS, now):
                changed[next_kc] = entry
            if not self._is_mastered(next_kc, states):
                break

        if next_kc is not None:
            outcome = AdvanceOutcome.IN_PROGRESS
        elif not path.entries:
            outcome = AdvanceOutcome.EMPTY
        elif path.is_complete:
            outcome = AdvanceOutcome.COMPLETE
        else:
            outcome = AdvanceOutcome.BLOCKED

        return AdvanceResult(
            path=path,
            next_kc_id=next_kc,
            changed=list(changed.values()),
            outcome=outcome,
        )

    # ── Reconciliation ────────────────────────────────────────────

    def reconcile(
        self,
        path: LearningPath,
        new_kc_ids: Optional[Iterable[str]] = None,
    ) -> ReconcileResult:
        """
        Insert KCs missing from ``path`` as pending entries.

        ``new_kc_ids`` limits the candidates; None means every active KC in
        the path's grade scope. Started entries keep their place and status;
        pending entries are re-ordered topologically (curriculum position as
        tie-break) so changed prerequisites are honoured. KCs on or behind a
        prerequisite cycle are rejected and reported. Running the same
        reconciliation twice leaves the path unchanged.
        """
        reports = self.curriculum.find_cycles()
        affected = self.curriculum.cycle_affected(reports)

        if new_kc_ids is None:
            candidates = self.curriculum.in_scope(path.grade_level)
        else:
            candidates = []
            for kc_id in new_kc_ids:
                kc = self.curriculum.find(kc_id)
                if kc is not None and kc.is_active and kc.in_scope(path.grade_level):
                    candidates.append(kc_id)

        existing = {e.kc_id: e for e in path.entries}
        to_add = []
        for kc_id in candidates:
            if kc_id in existing or kc_id in affected or kc_id in to_add:
                continue
            to_add.append(kc_id)

        relevant = set(candidates) | set(existing)
        rejected = [
            r for r in reports
            if relevant.intersection(r.cycle) or relevant.intersection(r.blocked)
        ]
        for report in rejected:
            logger.warning(
                "Prerequisite cycle %s blocks %s; skipped for student %s",
                report.cycle, report.blocked, path.student_id,
            )

        started = [e for e in path.entries if e.status != EntryStatus.PENDING]
        started_ids = {e.kc_id for e in started}
        pending_ids = [e.kc_id for e in path.entries if e.status == EntryStatus.PENDING] + to_add

        sortable = [k for k in pending_ids if k not in affected]
        stuck = [k for k in pending_ids if k in affected]

        entries = dict(existing)
        for kc_id in to_add:
            entries[kc_id] = PathEntry(kc_id=kc_id)

        path.entries = (
            started
            + [entries[k] for k in self.curriculum.ordered(sortable)]
            + [entries[k] for k in stuck]
        )

        retroactive = [
            k for k in to_add
            if started_ids.intersection(self.curriculum.all_dependents(k))
        ]
        if to_add:
            logger.info("Added %d KCs to path %s for student %s", len(to_add), path.path_id, path.student_id)

        return ReconcileResult(path=path, added=to_add, rejected=rejected, retroactive=retroactive)

    def create_path(self, student_id: str, grade_level: Optional[int] = None) -> ReconcileResult:
        """First active path for a student: every in-scope KC, pending."""
        path = LearningPath(student_id=student_id, grade_level=grade_level)
        logger.info("Creating learning path for student %s (grade %s)", student_id, grade_level)
        return self.reconcile(path)

    def supersede(self, path: LearningPath, grade_level: Optional[int] = None) -> ReconcileResult:
        """
        Archive ``path`` and build a replacement. Completed KCs stay
        completed; everything else starts again as pending.
        """
        path.status = PathStatus.ARCHIVED
        if grade_level is None:
            grade_level = path.grade_level

        fresh = LearningPath(student_id=path.student_id, grade_level=grade_level)
        fresh.entries = [
            PathEntry(kc_id=e.kc_id, status=EntryStatus.COMPLETED, updated_at=e.updated_at)
            for e in path.entries
            if e.status == EntryStatus.COMPLETED
        ]
        logger.info("Superseding path %s for student %s with %s", path.path_id, path.student_id, fresh.path_id)
        return self.reconcile(fresh)
