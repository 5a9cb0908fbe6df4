"""
Curriculum Graph: knowledge components and their prerequisite edges.

    (kc)-[requires]->(prerequisite kc)

KCs live in a flat table keyed by their stable id; prerequisite edges are
stored as (prerequisite, dependent) pairs in a networkx DiGraph so the graph
is serializable and can be shared between concurrent readers. Content
authoring can introduce cycles, so nothing here assumes the graph is a DAG:
cycles are found on demand and the affected KCs are reported instead of
breaking the rest of the curriculum.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

import networkx as nx

from masterypath.core.errors import DuplicateCurriculumCodeError, UnknownKnowledgeComponentError
from masterypath.services.knowledge_tracer import BKTParams

logger = logging.getLogger("masterypath.curriculum")

ACTIVE = "active"
RETIRED = "retired"


@dataclass
class KnowledgeComponent:
    """An atomic skill with its BKT defaults and prerequisites."""
    kc_id: str
    name: str
    params: BKTParams = field(default_factory=BKTParams.defaults)
    prerequisites: List[str] = field(default_factory=list)
    curriculum_code: Optional[str] = None
    grade_level: Optional[int] = None
    position: int = 0            # author-defined curriculum order, used for tie-breaks
    status: str = ACTIVE         # active | retired (soft delete)

    @property
    def is_active(self) -> bool:
        return self.status == ACTIVE

    def in_scope(self, grade_level: Optional[int]) -> bool:
        """Relevant for a student of ``grade_level`` (unknown grades match everything)."""
        if grade_level is None or self.grade_level is None:
            return True
        return self.grade_level == grade_level


@dataclass
class CycleReport:
    """Actionable report for content authors about one prerequisite cycle."""
    cycle: List[str]                       # KCs forming the strongly connected component
    blocked: List[str] = field(default_factory=list)   # dependents that cannot be ordered because of it

    def to_dict(self) -> Dict[str, Any]:
        return {"cycle": list(self.cycle), "blocked": list(self.blocked)}


class CurriculumGraph:
    """
    Prerequisite graph over knowledge components.

    Edges point from prerequisite to dependent, so a topological order lists
    prerequisites first. Prerequisites that name an unknown KC are kept as
    edges; such KCs stay blocked until the content exists.
    """

    def __init__(self, components: Iterable[KnowledgeComponent] = ()):
        self.graph = nx.DiGraph()
        self.components: Dict[str, KnowledgeComponent] = {}
        for kc in components:
            self.add_component(kc)

    # ─── Authoring ─────────────────────────────────────────
    def add_component(self, kc: KnowledgeComponent) -> KnowledgeComponent:
        """Insert or replace a KC and its incoming prerequisite edges."""
        self.check_codes([kc])
        return self._insert(kc)

    def add_components(self, components: Iterable[KnowledgeComponent]) -> List[KnowledgeComponent]:
        """
        Insert or replace a batch of KCs.

        Curriculum codes are checked for the whole batch before anything is
        written, so a rejected batch leaves the curriculum as it was.
        """
        batch = list(components)
        self.check_codes(batch)
        for kc in batch:
            self._insert(kc)
        return batch

    def check_codes(self, batch: List[KnowledgeComponent]) -> None:
        """Raise if a code in ``batch`` clashes with another KC, in or out of the batch."""
        incoming = {kc.kc_id for kc in batch}
        owners = {
            other.curriculum_code: other.kc_id
            for other in self.components.values()
            if other.curriculum_code and other.kc_id not in incoming
        }
        for kc in batch:
            if not kc.curriculum_code:
                continue
            owner = owners.setdefault(kc.curriculum_code, kc.kc_id)
            if owner != kc.kc_id:
                raise DuplicateCurriculumCodeError(
                    f"Curriculum code '{kc.curriculum_code}' already used by '{owner}'"
                )

    def _insert(self, kc: KnowledgeComponent) -> KnowledgeComponent:
        if kc.kc_id in self.graph:
            stale = list(self.graph.in_edges(kc.kc_id))
            self.graph.remove_edges_from(stale)

        self.components[kc.kc_id] = kc
        self.graph.add_node(kc.kc_id)
        for prereq in kc.prerequisites:
            self.graph.add_edge(prereq, kc.kc_id)
        return kc

    def retire(self, kc_id: str) -> KnowledgeComponent:
        kc = self.get(kc_id)
        kc.status = RETIRED
        return kc

    # ─── Query Methods ─────────────────────────────────────
    def __contains__(self, kc_id: str) -> bool:
        return kc_id in self.components

    def __len__(self) -> int:
        return len(self.components)

    def get(self, kc_id: str) -> KnowledgeComponent:
        try:
            return self.components[kc_id]
        except KeyError:
            raise UnknownKnowledgeComponentError(kc_id) from None

    def find(self, kc_id: str) -> Optional[KnowledgeComponent]:
        return self.components.get(kc_id)

    def prerequisites(self, kc_id: str) -> List[str]:
        """Immediate prerequisites (one level up)."""
        if kc_id not in self.graph:
            return []
        return sorted(self.graph.predecessors(kc_id))

    def dependents(self, kc_id: str) -> List[str]:
        """KCs that directly require this one."""
        if kc_id not in self.graph:
            return []
        return sorted(self.graph.successors(kc_id))

    def all_prerequisites(self, kc_id: str) -> Set[str]:
        return nx.ancestors(self.graph, kc_id) if kc_id in self.graph else set()

    def all_dependents(self, kc_id: str) -> Set[str]:
        return nx.descendants(self.graph, kc_id) if kc_id in self.graph else set()

    def in_scope(self, grade_level: Optional[int]) -> List[str]:
        """Active KCs relevant for a student of ``grade_level``, in curriculum order."""
        return sorted(
            (kc.kc_id for kc in self.components.values()
             if kc.is_active and kc.in_scope(grade_level)),
            key=self.order_key,
        )

    def order_key(self, kc_id: str):
        kc = self.components.get(kc_id)
        if kc is None:
            return (float("inf"), kc_id)
        return (kc.position, kc_id)

    # ─── Cycle detection ───────────────────────────────────
    def find_cycles(self) -> List[CycleReport]:
        """
        Every prerequisite cycle, with the dependents it blocks.

        A cycle is a strongly connected component with more than one node,
        or a KC listing itself as a prerequisite.
        """
        reports = []
        for component in nx.strongly_connected_components(self.graph):
            members = sorted(component, key=self.order_key)
            if len(members) == 1 and not self.graph.has_edge(members[0], members[0]):
                continue
            blocked: Set[str] = set()
            for member in members:
                blocked.update(nx.descendants(self.graph, member))
            blocked.difference_update(members)
            reports.append(CycleReport(cycle=members, blocked=sorted(blocked, key=self.order_key)))
        reports.sort(key=lambda r: self.order_key(r.cycle[0]))
        return reports

    def cycle_affected(self, reports: Optional[List[CycleReport]] = None) -> Set[str]:
        """KCs that sit on a cycle or depend on one."""
        if reports is None:
            reports = self.find_cycles()
        affected: Set[str] = set()
        for report in reports:
            affected.update(report.cycle)
            affected.update(report.blocked)
        return affected

    # ─── Ordering ──────────────────────────────────────────
    def ordered(self, kc_ids: Iterable[str]) -> List[str]:
        """
        Topological order of ``kc_ids`` (prerequisites first), ties broken by
        curriculum position then id. Only edges inside ``kc_ids`` constrain
        the order; the subset must be acyclic.
        """
        kc_ids = list(kc_ids)
        subgraph = self.graph.subgraph(kc_ids).copy()
        subgraph.add_nodes_from(kc_ids)
        return list(nx.lexicographical_topological_sort(subgraph, key=self.order_key))

    # ─── Serialization ─────────────────────────────────────
    def to_dict(self) -> Dict[str, Any]:
        return {
            "components": [
                {
                    "kc_id": kc.kc_id,
                    "name": kc.name,
                    "curriculum_code": kc.curriculum_code,
                    "grade_level": kc.grade_level,
                    "position": kc.position,
                    "status": kc.status,
                    "params": kc.params.as_dict(),
                    "prerequisites": self.prerequisites(kc.kc_id),
                }
                for kc in sorted(self.components.values(), key=lambda k: self.order_key(k.kc_id))
            ],
            "edges": sorted(self.graph.edges()),
        }

    def get_stats(self) -> Dict[str, Any]:
        return {
            "total_components": len(self.components),
            "total_edges": self.graph.number_of_edges(),
            "is_acyclic": nx.is_directed_acyclic_graph(self.graph),
        }
