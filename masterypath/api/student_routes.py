"""
Student API

Endpoints:
  PUT  /api/students/{id}                    register / update a student
  POST /api/students/{id}/responses          record a scored attempt (BKT update)
  GET  /api/students/{id}/mastery            knowledge state per KC
  GET  /api/students/{id}/need-assessment    system-set intervention priority
  GET  /api/students/{id}/path               active learning path
  POST /api/students/{id}/path/advance       completion check + next KC
  POST /api/students/{id}/path/reconcile     fold new KCs into the path
  POST /api/students/{id}/path/supersede     archive and rebuild the path
  GET  /api/students/{id}/next-content       next KC and a practice item for it
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from masterypath.core.errors import (
    OutOfOrderResponseError,
    UnknownKnowledgeComponentError,
    UnknownStudentError,
)
from masterypath.services.mastery_service import get_mastery_service

router = APIRouter()


# ── Request models ───────────────────────────────────────────


class StudentRequest(BaseModel):
    name: Optional[str] = None
    grade_level: Optional[int] = Field(None, ge=0)


class ResponseRequest(BaseModel):
    content_item_id: str
    kc_id: str
    correct: bool
    timestamp: Optional[datetime] = Field(None, description="When the answer was given (UTC if naive)")
    latency_ms: Optional[int] = Field(None, ge=0)


class ReconcileRequest(BaseModel):
    kc_ids: Optional[List[str]] = Field(
        None, description="New or changed KCs; omit to reconcile the whole grade scope"
    )


# ── Helpers ──────────────────────────────────────────────────


def _service():
    return get_mastery_service()


def _reconcile_payload(result) -> Dict[str, Any]:
    return {
        "path": result.path.to_dict(),
        "added": result.added,
        "retroactive": result.retroactive,
        "rejected": [r.to_dict() for r in result.rejected],
    }


# ═══════════════════════════════════════════════════════════════
# Endpoints
# ═══════════════════════════════════════════════════════════════


@router.put("/{student_id}", summary="Register or update a student")
async def upsert_student(student_id: str, request: StudentRequest) -> Dict[str, Any]:
    return _service().register_student(student_id, request.name, request.grade_level).to_dict()


@router.post("/{student_id}/responses", summary="Record a scored response")
async def record_response(student_id: str, request: ResponseRequest) -> Dict[str, Any]:
    """
    Applies one BKT step to the student's state for ``kc_id``.

    Responses for a (student, KC) pair must arrive in timestamp order;
    an older response than the last applied one is rejected with 409.
    """
    try:
        result = _service().record_response(
            student_id,
            request.content_item_id,
            request.kc_id,
            request.correct,
            timestamp=request.timestamp,
            latency_ms=request.latency_ms,
        )
    except (UnknownStudentError, UnknownKnowledgeComponentError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except OutOfOrderResponseError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return {
        "student_id": result.student_id,
        "kc_id": result.kc_id,
        "old_mastery": round(result.old_mastery, 4),
        "new_mastery": round(result.new_mastery, 4),
        "delta": round(result.delta, 4),
        "mastered": result.mastered,
        "degenerate": result.degenerate,
        "clamped_params": result.clamped_params,
        "explanation": result.explanation,
    }


@router.get("/{student_id}/mastery", summary="Knowledge state per KC")
async def student_mastery(student_id: str) -> Dict[str, Any]:
    try:
        states = _service().mastery(student_id)
    except UnknownStudentError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {
        "student_id": student_id,
        "knowledge_states": [
            {
                "kc_id": st.kc_id,
                "p_mastery": round(st.p_mastery, 4),
                "attempts": st.attempts,
                "accuracy": round(st.accuracy, 4),
                "params": st.params.as_dict(),
                "last_response_at": st.last_response_at.isoformat() if st.last_response_at else None,
            }
            for st in sorted(states.values(), key=lambda s: s.kc_id)
        ],
    }


@router.get("/{student_id}/need-assessment", summary="System-set intervention priority")
async def need_assessment(student_id: str) -> Dict[str, Any]:
    try:
        return _service().assess_student(student_id).to_dict()
    except UnknownStudentError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/{student_id}/path", summary="Active learning path")
async def learning_path(student_id: str) -> Dict[str, Any]:
    try:
        return _service().get_path(student_id).to_dict()
    except UnknownStudentError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/{student_id}/path/advance", summary="Advance the learning path")
async def advance_path(student_id: str) -> Dict[str, Any]:
    """
    Completes in-progress KCs that reached the mastery threshold and
    starts the next eligible one. Returns "all caught up" when nothing
    is eligible.
    """
    try:
        result = _service().advance_path(student_id)
    except UnknownStudentError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {
        "next_kc_id": result.next_kc_id,
        "outcome": result.outcome.value,
        "caught_up": result.caught_up,
        "message": result.message,
        "changed": [e.to_dict() for e in result.changed],
        "path": result.path.to_dict(),
    }


@router.post("/{student_id}/path/reconcile", summary="Fold new KCs into the path")
async def reconcile_path(student_id: str, request: ReconcileRequest) -> Dict[str, Any]:
    try:
        result = _service().reconcile_path(student_id, request.kc_ids)
    except UnknownStudentError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _reconcile_payload(result)


@router.post("/{student_id}/path/supersede", summary="Archive and rebuild the path")
async def supersede_path(student_id: str) -> Dict[str, Any]:
    try:
        result = _service().supersede_path(student_id)
    except UnknownStudentError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _reconcile_payload(result)


@router.get("/{student_id}/next-content", summary="Next KC and a practice item")
async def next_content(student_id: str) -> Dict[str, Any]:
    try:
        kc_id, recommendation = _service().next_content(student_id)
    except UnknownStudentError as e:
        raise HTTPException(status_code=404, detail=str(e))
    if kc_id is None:
        return {"kc_id": None, "item": None, "message": "All caught up!"}
    return {
        "kc_id": kc_id,
        "item": recommendation.to_dict() if recommendation else None,
        "message": None if recommendation else f"No content items authored for {kc_id} yet",
    }
