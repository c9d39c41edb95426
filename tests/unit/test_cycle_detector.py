"""Unit tests for the expression dependency graph."""

from edc_engine.services.cycle_detector import (
    DependencyGraph,
    dependency_order,
    detect_expression_cycles,
)
from edc_engine.services.schema_parser import parse_form_schema


def _schema(fields, repeat_fields=None):
    sections = [{"id": "main", "fields": fields}]
    if repeat_fields is not None:
        sections.append({"id": "meds", "repeatable": True, "fields": repeat_fields})
    return parse_form_schema({"pages": [{"id": "page1", "sections": sections}]})


class TestDependencyGraph:
    """Tests for DependencyGraph construction."""

    def test_edges_from_expressions_and_depends_on(self):
        """Test that calculated, visibility and dependsOn create edges."""
        schema = _schema([
            {"id": "weight", "type": "number"},
            {"id": "height", "type": "number"},
            {"id": "bmi", "type": "calculated", "expression": "{weight} / {height}"},
            {"id": "note", "type": "text", "visibility": "{bmi} > 30"},
            {"id": "flag", "type": "text", "dependsOn": ["note"]},
        ])
        graph = DependencyGraph.from_schema(schema)
        assert graph.edges["weight"] == {"bmi"}
        assert graph.edges["height"] == {"bmi"}
        assert graph.edges["bmi"] == {"note"}
        assert graph.edges["note"] == {"flag"}

    def test_descriptive_fields_are_not_nodes(self):
        """Test that fields without a value are left out."""
        schema = _schema([
            {"id": "intro", "type": "descriptive"},
            {"id": "age", "type": "integer"},
        ])
        assert DependencyGraph.from_schema(schema).nodes == ["age"]

    def test_repeatable_section_nodes(self):
        """Test sibling and top-level resolution inside repeatable sections."""
        schema = _schema(
            [{"id": "weight", "type": "number"}],
            repeat_fields=[
                {"id": "dose", "type": "number"},
                {"id": "per_kg", "type": "calculated", "expression": "{dose} / {weight}"},
            ],
        )
        graph = DependencyGraph.from_schema(schema)
        assert "meds.dose" in graph.nodes
        assert graph.edges["meds.dose"] == {"meds.per_kg"}
        assert graph.edges["weight"] == {"meds.per_kg"}

    def test_cross_form_refs_are_ignored(self):
        """Test that {form.field} references add no edges."""
        schema = _schema([
            {"id": "change", "type": "calculated", "expression": "{visit1.weight} - 1"},
        ])
        assert dict(DependencyGraph.from_schema(schema).edges) == {}


class TestCycles:
    """Tests for cycle detection and ordering."""

    def test_acyclic_schema(self):
        """Test that a chain has no cycle."""
        schema = _schema([
            {"id": "a", "type": "number"},
            {"id": "b", "type": "calculated", "expression": "{a} * 2"},
            {"id": "c", "type": "calculated", "expression": "{b} + 1"},
        ])
        assert detect_expression_cycles(schema) == []

    def test_self_reference(self):
        """Test that a field depending on itself is a cycle."""
        schema = _schema([
            {"id": "a", "type": "calculated", "expression": "{a} + 1"},
        ])
        assert detect_expression_cycles(schema) == [
            "Circular dependency detected involving fields: a"
        ]

    def test_visibility_cycle(self):
        """Test a cycle through visibility expressions."""
        schema = _schema([
            {"id": "x", "type": "text", "visibility": "{y} == 'show'"},
            {"id": "y", "type": "text", "visibility": "{x} == 'show'"},
            {"id": "z", "type": "text"},
        ])
        assert detect_expression_cycles(schema) == [
            "Circular dependency detected involving fields: x, y"
        ]

    def test_dependency_order(self):
        """Test that calculated fields come after their inputs."""
        schema = _schema([
            {"id": "c", "type": "calculated", "expression": "{b} + 1"},
            {"id": "b", "type": "calculated", "expression": "{a} * 2"},
            {"id": "a", "type": "number"},
        ])
        order = dependency_order(schema)
        assert order.index("a") < order.index("b") < order.index("c")
