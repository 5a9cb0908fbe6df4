"""
In-memory persistence for students, curriculum, knowledge states,
responses, learning paths and content items.

Stands in for the relational store. Writers take a per-key lock:

  knowledge state  → one writer per (student, KC)
  learning path    → one writer per student

and responses older than the last one applied to a (student, KC) pair are
rejected, since replaying them would corrupt the sequential BKT estimate.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from masterypath.core.errors import OutOfOrderResponseError, UnknownStudentError
from masterypath.services.content_recommender import ContentItem
from masterypath.services.curriculum import CurriculumGraph
from masterypath.services.knowledge_tracer import KnowledgeState, Response
from masterypath.services.path_sequencer import LearningPath, PathStatus

logger = logging.getLogger("masterypath.store")


@dataclass
class StudentRecord:
    student_id: str
    name: str
    grade_level: Optional[int] = None
    declared_priority: Optional[str] = None    # teacher-set: "High" | "Medium" | "Low"

    def to_dict(self) -> dict:
        return {
            "student_id": self.student_id,
            "name": self.name,
            "grade_level": self.grade_level,
            "declared_priority": self.declared_priority,
        }


class MemoryStore:

    def __init__(self):
        self._lock = threading.RLock()
        self._key_locks: Dict[Tuple[str, ...], threading.Lock] = {}

        self.curriculum = CurriculumGraph()
        self._students: Dict[str, StudentRecord] = {}
        self._states: Dict[Tuple[str, str], KnowledgeState] = {}
        self._responses: Dict[str, List[Response]] = {}
        self._paths: Dict[str, List[LearningPath]] = {}
        self._content: Dict[str, ContentItem] = {}

    # ── Locks ───────────────────────────────────────
    def _named_lock(self, *key: str) -> threading.Lock:
        with self._lock:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = self._key_locks[key] = threading.Lock()
            return lock

    def state_lock(self, student_id: str, kc_id: str) -> threading.Lock:
        """Serializes knowledge-state writes for one (student, KC) pair."""
        return self._named_lock("state", student_id, kc_id)

    def path_lock(self, student_id: str) -> threading.Lock:
        """Serializes learning-path writes for one student."""
        return self._named_lock("path", student_id)

    # ── Students ────────────────────────────────────
    def upsert_student(
        self,
        student_id: str,
        name: Optional[str] = None,
        grade_level: Optional[int] = None,
    ) -> StudentRecord:
        with self._lock:
            record = self._students.get(student_id)
            if record is None:
                record = StudentRecord(student_id=student_id, name=name or student_id, grade_level=grade_level)
                self._students[student_id] = record
            else:
                if name is not None:
                    record.name = name
                if grade_level is not None:
                    record.grade_level = grade_level
            return record

    def get_student(self, student_id: str) -> StudentRecord:
        try:
            return self._students[student_id]
        except KeyError:
            raise UnknownStudentError(student_id) from None

    def list_students(self) -> List[StudentRecord]:
        with self._lock:
            return sorted(self._students.values(), key=lambda s: s.student_id)

    def set_priority(self, student_id: str, priority: Optional[str]) -> StudentRecord:
        record = self.get_student(student_id)
        record.declared_priority = priority
        return record

    # ── Knowledge states ────────────────────────────
    def get_state(self, student_id: str, kc_id: str) -> Optional[KnowledgeState]:
        return self._states.get((student_id, kc_id))

    def save_state(self, state: KnowledgeState) -> KnowledgeState:
        with self._lock:
            self._states[(state.student_id, state.kc_id)] = state
        return state

    def states_for(self, student_id: str) -> Dict[str, KnowledgeState]:
        with self._lock:
            return {kc: st for (sid, kc), st in self._states.items() if sid == student_id}

    def all_states(self) -> List[KnowledgeState]:
        with self._lock:
            return list(self._states.values())

    # ── Responses ───────────────────────────────────
    def check_order(self, response: Response) -> None:
        """Raise if ``response`` predates the last one applied to its (student, KC)."""
        state = self.get_state(response.student_id, response.kc_id)
        if state is None or state.last_response_at is None:
            return
        if response.timestamp < state.last_response_at:
            logger.warning(
                "Rejecting out-of-order response for (%s, %s): %s < %s",
                response.student_id, response.kc_id,
                response.timestamp.isoformat(), state.last_response_at.isoformat(),
            )
            raise OutOfOrderResponseError(
                response.student_id, response.kc_id, response.timestamp, state.last_response_at,
            )

    def append_response(self, response: Response) -> None:
        with self._lock:
            self._responses.setdefault(response.student_id, []).append(response)

    def responses_for(self, student_id: str) -> List[Response]:
        with self._lock:
            return list(self._responses.get(student_id, []))

    def recent_item_ids(self, student_id: str, window: int) -> List[str]:
        """Content items from the student's last ``window`` responses, newest first."""
        history = sorted(self.responses_for(student_id), key=lambda r: r.timestamp, reverse=True)
        return [r.content_item_id for r in history[:window]]

    # ── Learning paths ──────────────────────────────
    def active_path(self, student_id: str) -> Optional[LearningPath]:
        for path in reversed(self._paths.get(student_id, [])):
            if path.status == PathStatus.ACTIVE:
                return path
        return None

    def save_path(self, path: LearningPath) -> LearningPath:
        with self._lock:
            history = self._paths.setdefault(path.student_id, [])
            if all(p.path_id != path.path_id for p in history):
                history.append(path)
        return path

    def path_history(self, student_id: str) -> List[LearningPath]:
        with self._lock:
            return list(self._paths.get(student_id, []))

    # ── Content items ───────────────────────────────
    def add_content_item(self, item: ContentItem) -> ContentItem:
        with self._lock:
            self._content[item.item_id] = item
        return item

    def content_items_for(self, kc_id: str) -> List[ContentItem]:
        with self._lock:
            return sorted(
                (item for item in self._content.values() if item.kc_id == kc_id),
                key=lambda i: i.item_id,
            )

    def reset(self) -> None:
        with self._lock:
            self.curriculum = CurriculumGraph()
            self._students.clear()
            self._states.clear()
            self._responses.clear()
            self._paths.clear()
            self._content.clear()
            self._key_locks.clear()


# ── Singleton ──────────────────────────────────
_store: Optional[MemoryStore] = None


def get_store() -> MemoryStore:
    global _store
    if _store is None:
        _store = MemoryStore()
    return _store
