"""Shared fixtures: a fresh in-memory store and a service bound to it."""
import pytest

from masterypath.db.memory_store import MemoryStore
from masterypath.services.curriculum import KnowledgeComponent
from masterypath.services.knowledge_tracer import BKTParams
from masterypath.services.mastery_service import MasteryService


def make_kc(kc_id, prerequisites=(), position=0, grade_level=None, code=None, **params):
    return KnowledgeComponent(
        kc_id=kc_id,
        name=kc_id.replace("_", " ").title(),
        params=BKTParams(**params) if params else BKTParams(),
        prerequisites=list(prerequisites),
        curriculum_code=code,
        grade_level=grade_level,
        position=position,
    )


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def service(store):
    return MasteryService(store=store)
