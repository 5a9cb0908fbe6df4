"""
Mastery Service: the engine's logical operations wired over a store.

  record_response()      → KnowledgeTracer, under the (student, KC) lock
  advance_path()         → PathSequencer completion check + next step
  reconcile_path()       → fold new / changed KCs into a student's path
  supersede_path()       → archive and rebuild a student's path
  compute_interventions()→ InterventionScorer over a roster snapshot

Routers call into this module only; it is the single place where the pure
components meet persisted state.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from masterypath.core.config import get_settings
from masterypath.core.timeutil import as_utc
from masterypath.db.memory_store import MemoryStore, StudentRecord, get_store
from masterypath.services.content_recommender import (
    ContentItem,
    ItemRecommendation,
    recommend_content_item,
)
from masterypath.services.curriculum import CycleReport, KnowledgeComponent
from masterypath.services.intervention_scorer import (
    InterventionRecord,
    InterventionScorer,
    KCOverviewRow,
    NeedAssessment,
    StudentPerformance,
)
from masterypath.services.knowledge_tracer import KnowledgeState, KnowledgeTracer, Response, TraceResult
from masterypath.services.path_sequencer import (
    AdvanceResult,
    LearningPath,
    PathSequencer,
    ReconcileResult,
)

logger = logging.getLogger("masterypath.service")


class MasteryService:

    def __init__(
        self,
        store: Optional[MemoryStore] = None,
        tracer: Optional[KnowledgeTracer] = None,
        scorer: Optional[InterventionScorer] = None,
    ):
        self.settings = get_settings()
        self.store = store or get_store()
        self.tracer = tracer or KnowledgeTracer(self.settings.MASTERY_THRESHOLD)
        self.scorer = scorer or InterventionScorer(settings=self.settings)

    @property
    def sequencer(self) -> PathSequencer:
        return PathSequencer(self.store.curriculum, self.tracer.mastery_threshold)

    # ─── Students & curriculum ──────────────────────────────

    def register_student(
        self, student_id: str, name: Optional[str] = None, grade_level: Optional[int] = None
    ) -> StudentRecord:
        return self.store.upsert_student(student_id, name=name, grade_level=grade_level)

    def upsert_components(self, components: Iterable[KnowledgeComponent]) -> List[CycleReport]:
        """
        Add or replace KCs, then report any prerequisite cycles they create.
        A duplicate curriculum code rejects the whole batch.
        """
        self.store.curriculum.add_components(components)
        reports = self.store.curriculum.find_cycles()
        for report in reports:
            logger.warning("Curriculum contains prerequisite cycle %s", report.cycle)
        return reports

    def add_content_item(self, item: ContentItem) -> ContentItem:
        self.store.curriculum.get(item.kc_id)
        return self.store.add_content_item(item)

    # ─── recordResponse ─────────────────────────────────────

    def record_response(
        self,
        student_id: str,
        content_item_id: str,
        kc_id: str,
        correct: bool,
        timestamp: Optional[datetime] = None,
        latency_ms: Optional[int] = None,
    ) -> TraceResult:
        self.store.get_student(student_id)
        kc = self.store.curriculum.get(kc_id)
        response = Response(
            student_id=student_id,
            content_item_id=content_item_id,
            kc_id=kc_id,
            correct=correct,
            timestamp=as_utc(timestamp),
            latency_ms=latency_ms,
        )

        with self.store.state_lock(student_id, kc_id):
            self.store.check_order(response)
            state = self.tracer.seed_state(
                student_id, kc_id, kc.params, existing=self.store.get_state(student_id, kc_id)
            )
            result = self.tracer.apply(state, response)
            self.store.save_state(state)
            self.store.append_response(response)

        logger.debug(
            "Student %s on %s: %.4f → %.4f", student_id, kc_id, result.old_mastery, result.new_mastery
        )
        return result

    def mastery(self, student_id: str) -> Dict[str, KnowledgeState]:
        self.store.get_student(student_id)
        return self.store.states_for(student_id)

    # ─── Paths ──────────────────────────────────────────────

    def _ensure_path(self, student: StudentRecord) -> LearningPath:
        path = self.store.active_path(student.student_id)
        if path is None:
            path = self.sequencer.create_path(student.student_id, student.grade_level).path
            self.store.save_path(path)
        return path

    def get_path(self, student_id: str) -> LearningPath:
        student = self.store.get_student(student_id)
        with self.store.path_lock(student_id):
            return self._ensure_path(student)

    def advance_path(self, student_id: str) -> AdvanceResult:
        student = self.store.get_student(student_id)
        with self.store.path_lock(student_id):
            path = self._ensure_path(student)
            result = self.sequencer.advance(path, self.store.states_for(student_id))
            self.store.save_path(result.path)
        return result

    def reconcile_path(self, student_id: str, kc_ids: Optional[Iterable[str]] = None) -> ReconcileResult:
        student = self.store.get_student(student_id)
        with self.store.path_lock(student_id):
            path = self.store.active_path(student_id)
            if path is None:
                result = self.sequencer.create_path(student_id, student.grade_level)
            else:
                result = self.sequencer.reconcile(path, kc_ids)
            self.store.save_path(result.path)
        return result

    def reconcile_all(self, kc_ids: Optional[Iterable[str]] = None) -> Dict[str, ReconcileResult]:
        """Reconcile every student that already has an active path."""
        kc_ids = list(kc_ids) if kc_ids is not None else None
        results = {}
        for student in self.store.list_students():
            if self.store.active_path(student.student_id) is not None:
                results[student.student_id] = self.reconcile_path(student.student_id, kc_ids)
        return results

    def supersede_path(self, student_id: str) -> ReconcileResult:
        student = self.store.get_student(student_id)
        with self.store.path_lock(student_id):
            old = self._ensure_path(student)
            result = self.sequencer.supersede(old, student.grade_level)
            self.store.save_path(result.path)
        return result

    def next_content(self, student_id: str) -> Tuple[Optional[str], Optional[ItemRecommendation]]:
        """Current KC for the student and the practice item best suited to it."""
        path = self.get_path(student_id)
        states = self.store.states_for(student_id)
        kc_id = self.sequencer.next_step(path, states)
        if kc_id is None:
            return None, None

        state = states.get(kc_id)
        p_mastery = state.p_mastery if state is not None else self.store.curriculum.get(kc_id).params.p_L0
        recent = self.store.recent_item_ids(student_id, self.settings.RECENT_ITEM_WINDOW)
        return kc_id, recommend_content_item(self.store.content_items_for(kc_id), p_mastery, recent)

    # ─── Interventions ──────────────────────────────────────

    def set_priority(self, student_id: str, priority: Optional[str]) -> StudentRecord:
        return self.store.set_priority(student_id, priority)

    def build_snapshot(self) -> List[StudentPerformance]:
        snapshot = []
        for student in self.store.list_students():
            snapshot.append(self.scorer.summarize_student(
                student.student_id,
                student.name,
                list(self.store.states_for(student.student_id).values()),
                self.store.responses_for(student.student_id),
                declared_priority=student.declared_priority,
            ))
        return snapshot

    def compute_interventions(
        self,
        snapshot: Optional[List[StudentPerformance]] = None,
        top_n: Optional[int] = None,
        urgent_only: bool = True,
        now: Optional[datetime] = None,
    ) -> List[InterventionRecord]:
        if snapshot is None:
            snapshot = self.build_snapshot()
        if urgent_only:
            return self.scorer.urgent(snapshot, top_n=top_n, now=now)
        return self.scorer.rank(snapshot, now=now)

    def assess_student(self, student_id: str) -> NeedAssessment:
        self.store.get_student(student_id)
        return self.scorer.assess_need(
            student_id,
            list(self.store.states_for(student_id).values()),
            self.store.responses_for(student_id),
        )

    def kc_overview(self) -> List[KCOverviewRow]:
        return self.scorer.kc_overview(
            self.store.curriculum.components.values(), self.store.all_states()
        )


# ── Singleton ──────────────────────────────────
_service: Optional[MasteryService] = None


def get_mastery_service() -> MasteryService:
    global _service
    if _service is None:
        _service = MasteryService()
    return _service
