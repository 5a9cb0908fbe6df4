"""
Teacher Dashboard API

Endpoints:
  GET  /api/teacher/interventions              urgent view (top-N, default 5)
  GET  /api/teacher/interventions/all          full ranked list
  POST /api/teacher/interventions              rank a caller-supplied roster snapshot
  PUT  /api/teacher/students/{id}/priority     teacher-set intervention priority
  GET  /api/teacher/kc-overview                class mastery distribution per KC
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from masterypath.core.errors import UnknownStudentError
from masterypath.services.intervention_scorer import StudentPerformance
from masterypath.services.mastery_service import get_mastery_service

router = APIRouter()

PRIORITY_PATTERN = "^(High|Medium|Low)$"


# ── Request models ───────────────────────────────────────────


class StudentSnapshot(BaseModel):
    student_id: str
    name: str
    p_mastery: float = Field(..., ge=0.0, le=1.0)
    last_active_at: Optional[datetime] = None
    declared_priority: Optional[str] = Field(None, pattern=PRIORITY_PATTERN)


class SnapshotRequest(BaseModel):
    students: List[StudentSnapshot] = Field(default_factory=list)
    top_n: Optional[int] = Field(None, ge=0)
    as_of: Optional[datetime] = None


class PriorityRequest(BaseModel):
    priority: Optional[str] = Field(None, pattern=PRIORITY_PATTERN)


# ── Helpers ──────────────────────────────────────────────────


def _service():
    return get_mastery_service()


def _payload(records) -> Dict[str, Any]:
    """Empty rosters degrade to a "no data" payload instead of an error."""
    return {
        "count": len(records),
        "interventions": [r.to_dict() for r in records],
        "message": None if records else "No data",
    }


# ═══════════════════════════════════════════════════════════════
# Endpoints
# ═══════════════════════════════════════════════════════════════


@router.get("/interventions", summary="Most urgent students")
async def urgent_interventions(top_n: Optional[int] = Query(None, ge=0)) -> Dict[str, Any]:
    """
    Students ranked by urgency score, highest first, ties by name.

    Signals: critical / very low mastery, never started or inactive for
    more than 3 / 7 days, and a declared High priority.
    """
    return _payload(_service().compute_interventions(top_n=top_n))


@router.get("/interventions/all", summary="Full urgency ranking")
async def all_interventions() -> Dict[str, Any]:
    return _payload(_service().compute_interventions(urgent_only=False))


@router.post("/interventions", summary="Rank a roster snapshot")
async def rank_snapshot(request: SnapshotRequest) -> Dict[str, Any]:
    snapshot = [
        StudentPerformance(
            student_id=s.student_id,
            name=s.name,
            p_mastery=s.p_mastery,
            last_active_at=s.last_active_at,
            declared_priority=s.declared_priority,
        )
        for s in request.students
    ]
    records = _service().compute_interventions(
        snapshot=snapshot,
        top_n=request.top_n,
        now=request.as_of,
    )
    return _payload(records)


@router.put("/students/{student_id}/priority", summary="Set intervention priority")
async def set_priority(student_id: str, request: PriorityRequest) -> Dict[str, Any]:
    try:
        return _service().set_priority(student_id, request.priority).to_dict()
    except UnknownStudentError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/kc-overview", summary="Class mastery per knowledge component")
async def kc_overview() -> List[Dict[str, Any]]:
    return [row.to_dict() for row in _service().kc_overview()]
