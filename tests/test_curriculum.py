"""
Curriculum Graph Tests

Tests:
  - Upserting components and replacing prerequisite edges
  - Curriculum-code uniqueness
  - Cycle detection (multi-node and self-loop) with blocked dependents
  - Topological ordering with position / id tie-breaks
  - Grade scoping and retired components
"""
import pytest

from masterypath.core.errors import DuplicateCurriculumCodeError, UnknownKnowledgeComponentError
from masterypath.services.curriculum import RETIRED, CurriculumGraph
from tests.conftest import make_kc


class TestAuthoring:

    def test_prerequisite_edges(self):
        graph = CurriculumGraph([make_kc("counting"), make_kc("addition", ["counting"])])
        assert graph.prerequisites("addition") == ["counting"]
        assert graph.dependents("counting") == ["addition"]

    def test_upsert_replaces_prerequisites(self):
        graph = CurriculumGraph([make_kc("a"), make_kc("b"), make_kc("c", ["a"])])
        graph.add_component(make_kc("c", ["b"]))
        assert graph.prerequisites("c") == ["b"]
        assert len(graph) == 3

    def test_duplicate_curriculum_code_rejected(self):
        graph = CurriculumGraph([make_kc("a", code="MATH.1")])
        with pytest.raises(DuplicateCurriculumCodeError):
            graph.add_component(make_kc("b", code="MATH.1"))

    def test_rejected_batch_changes_nothing(self):
        graph = CurriculumGraph([make_kc("x", code="C1")])
        with pytest.raises(DuplicateCurriculumCodeError):
            graph.add_components([make_kc("y"), make_kc("z", ["y"], code="C1")])
        assert "y" not in graph
        assert "z" not in graph
        assert len(graph) == 1

    def test_codes_within_a_batch_must_differ(self):
        graph = CurriculumGraph()
        with pytest.raises(DuplicateCurriculumCodeError):
            graph.add_components([make_kc("a", code="C1"), make_kc("b", code="C1")])
        assert len(graph) == 0

    def test_batch_may_swap_codes(self):
        graph = CurriculumGraph([make_kc("a", code="C1"), make_kc("b", code="C2")])
        graph.add_components([make_kc("a", code="C2"), make_kc("b", code="C1")])
        assert graph.get("a").curriculum_code == "C2"
        assert graph.get("b").curriculum_code == "C1"

    def test_same_kc_may_keep_its_code(self):
        graph = CurriculumGraph([make_kc("a", code="MATH.1")])
        graph.add_component(make_kc("a", code="MATH.1", position=4))
        assert graph.get("a").position == 4

    def test_get_unknown_raises(self):
        with pytest.raises(UnknownKnowledgeComponentError):
            CurriculumGraph().get("missing")

    def test_retire_is_soft(self):
        graph = CurriculumGraph([make_kc("a")])
        graph.retire("a")
        assert "a" in graph
        assert graph.get("a").status == RETIRED

    def test_transitive_queries(self):
        graph = CurriculumGraph([make_kc("a"), make_kc("b", ["a"]), make_kc("c", ["b"])])
        assert graph.all_prerequisites("c") == {"a", "b"}
        assert graph.all_dependents("a") == {"b", "c"}
        assert graph.all_dependents("missing") == set()


class TestCycles:

    def test_acyclic_graph_has_no_reports(self):
        graph = CurriculumGraph([make_kc("a"), make_kc("b", ["a"])])
        assert graph.find_cycles() == []
        assert graph.get_stats()["is_acyclic"] is True

    def test_cycle_reports_members_and_blocked(self):
        graph = CurriculumGraph([
            make_kc("a"),
            make_kc("c", ["d"], position=2),
            make_kc("d", ["c"], position=3),
            make_kc("e", ["d"], position=4),
        ])
        reports = graph.find_cycles()
        assert len(reports) == 1
        assert reports[0].cycle == ["c", "d"]
        assert reports[0].blocked == ["e"]
        assert graph.cycle_affected(reports) == {"c", "d", "e"}

    def test_self_loop_is_a_cycle(self):
        graph = CurriculumGraph([make_kc("a", ["a"])])
        reports = graph.find_cycles()
        assert [r.cycle for r in reports] == [["a"]]

    def test_report_serializes(self):
        graph = CurriculumGraph([make_kc("x", ["y"]), make_kc("y", ["x"])])
        assert graph.find_cycles()[0].to_dict() == {"cycle": ["x", "y"], "blocked": []}


class TestOrdering:

    def test_prerequisites_come_first_even_against_position(self):
        graph = CurriculumGraph([make_kc("advanced", position=0), make_kc("basics", position=9)])
        graph.add_component(make_kc("advanced", ["basics"], position=0))
        assert graph.ordered(["advanced", "basics"]) == ["basics", "advanced"]

    def test_ties_broken_by_position_then_id(self):
        graph = CurriculumGraph([
            make_kc("b", position=1),
            make_kc("a", position=1),
            make_kc("z", position=0),
        ])
        assert graph.ordered(["a", "b", "z"]) == ["z", "a", "b"]

    def test_only_edges_inside_subset_constrain(self):
        graph = CurriculumGraph([make_kc("a", position=5), make_kc("b", ["a"], position=0)])
        assert graph.ordered(["b"]) == ["b"]

    def test_in_scope_filters_grade_and_retired(self):
        graph = CurriculumGraph([
            make_kc("g3", grade_level=3, position=1),
            make_kc("g4", grade_level=4, position=0),
            make_kc("any", position=2),
            make_kc("old", grade_level=3, position=3),
        ])
        graph.retire("old")
        assert graph.in_scope(3) == ["g3", "any"]
        assert graph.in_scope(None) == ["g4", "g3", "any"]
