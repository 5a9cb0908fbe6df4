"""
Curriculum API

Endpoints:
  POST /api/curriculum/components     upsert knowledge components, reconcile active paths
  GET  /api/curriculum                all components and prerequisite edges
  GET  /api/curriculum/cycles         prerequisite cycles, for content authors
  POST /api/curriculum/content-items  add practice items to a KC
  POST /api/curriculum/components/{id}/retire  soft-delete a KC
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from masterypath.core.errors import DuplicateCurriculumCodeError, UnknownKnowledgeComponentError
from masterypath.services.content_recommender import ContentItem
from masterypath.services.curriculum import KnowledgeComponent
from masterypath.services.knowledge_tracer import BKTParams
from masterypath.services.mastery_service import get_mastery_service

router = APIRouter()


class BKTParamsModel(BaseModel):
    p_L0: float = 0.3
    p_T: float = 0.09
    p_S: float = 0.1
    p_G: float = 0.2


class ComponentRequest(BaseModel):
    kc_id: str
    name: str
    curriculum_code: Optional[str] = None
    grade_level: Optional[int] = None
    position: int = 0
    prerequisites: List[str] = Field(default_factory=list)
    params: Optional[BKTParamsModel] = None


class ComponentsRequest(BaseModel):
    components: List[ComponentRequest]
    reconcile: bool = Field(True, description="Fold the components into every active learning path")


class ContentItemRequest(BaseModel):
    item_id: str
    kc_id: str
    difficulty: int = Field(3, ge=1, le=5)
    title: str = ""


def _service():
    return get_mastery_service()


def _to_component(req: ComponentRequest) -> KnowledgeComponent:
    params = BKTParams(**req.params.model_dump()) if req.params else BKTParams.defaults()
    return KnowledgeComponent(
        kc_id=req.kc_id,
        name=req.name,
        params=params,
        prerequisites=list(req.prerequisites),
        curriculum_code=req.curriculum_code,
        grade_level=req.grade_level,
        position=req.position,
    )


@router.post("/components", summary="Add or update knowledge components")
async def upsert_components(request: ComponentsRequest) -> Dict[str, Any]:
    service = _service()
    try:
        cycles = service.upsert_components(_to_component(c) for c in request.components)
    except DuplicateCurriculumCodeError as e:
        raise HTTPException(status_code=409, detail=str(e))

    reconciled = {}
    if request.reconcile:
        kc_ids = [c.kc_id for c in request.components]
        reconciled = {
            sid: {"added": r.added, "retroactive": r.retroactive}
            for sid, r in service.reconcile_all(kc_ids).items()
        }
    return {
        "upserted": [c.kc_id for c in request.components],
        "cycles": [r.to_dict() for r in cycles],
        "reconciled_paths": reconciled,
    }


@router.post("/components/{kc_id}/retire", summary="Retire a knowledge component")
async def retire_component(kc_id: str) -> Dict[str, Any]:
    try:
        kc = _service().store.curriculum.retire(kc_id)
    except UnknownKnowledgeComponentError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"kc_id": kc.kc_id, "status": kc.status}


@router.get("", summary="Curriculum graph")
async def get_curriculum() -> Dict[str, Any]:
    curriculum = _service().store.curriculum
    return {**curriculum.to_dict(), "stats": curriculum.get_stats()}


@router.get("/cycles", summary="Prerequisite cycles")
async def get_cycles() -> List[Dict[str, Any]]:
    """Each cycle with the dependents it blocks from being sequenced."""
    return [r.to_dict() for r in _service().store.curriculum.find_cycles()]


@router.post("/content-items", summary="Add practice items")
async def add_content_items(items: List[ContentItemRequest]) -> Dict[str, Any]:
    service = _service()
    added = []
    for req in items:
        try:
            service.add_content_item(ContentItem(**req.model_dump()))
        except UnknownKnowledgeComponentError as e:
            raise HTTPException(status_code=404, detail=str(e))
        added.append(req.item_id)
    return {"added": added}
