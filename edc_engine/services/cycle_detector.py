"""Expression dependency graph for form schemas.

Calculated expressions, ``dependsOn`` lists and visibility expressions make
fields depend on other fields. The dependency graph must be acyclic so that
calculated values can be resolved in order and visibility can never depend
on itself.

Fields inside a repeatable section are graph nodes named
``section_id.field_id``; a reference from inside the section to a sibling
field resolves to the sibling, anything else resolves to the top level.
Cross-form references (``{form.field}``) are not part of the graph.
"""

from collections import defaultdict, deque
from typing import Dict, List, Set

from edc_engine.schemas.form import FormSchema, Section
from edc_engine.services.expressions import extract_field_refs
from edc_engine.logging_config import get_logger

logger = get_logger(__name__)


def node_id(section: Section, field_id: str) -> str:
    """Graph node name for a field of a section."""
    return f"{section.id}.{field_id}" if section.repeatable else field_id


class DependencyGraph:
    """Directed graph of field dependencies (edge: dependency -> dependent)."""

    def __init__(self):
        self.nodes: List[str] = []
        self.edges: Dict[str, Set[str]] = defaultdict(set)

    @classmethod
    def from_schema(cls, schema: FormSchema) -> "DependencyGraph":
        """Build the graph for a parsed schema.

        Args:
            schema: Parsed form schema

        Returns:
            DependencyGraph with one node per value-holding field
        """
        graph = cls()
        pending = []

        for _, section in schema.iter_sections():
            siblings = {field.id for field in section.fields}
            for field in section.fields:
                if not field.has_value:
                    continue
                target = node_id(section, field.id)
                if target not in graph.nodes:
                    graph.nodes.append(target)

                refs = list(field.depends_on)
                expression = getattr(field, "expression", None)
                for source in (expression, field.visibility):
                    if isinstance(source, str):
                        refs.extend(extract_field_refs(source))

                for ref in refs:
                    if "." in ref:
                        continue
                    dependency = node_id(section, ref) if ref in siblings else ref
                    pending.append((dependency, target))

        known = set(graph.nodes)
        for dependency, target in pending:
            # Only edges between known fields
            if dependency in known and target in known:
                graph.edges[dependency].add(target)

        return graph

    def topological_order(self) -> tuple[List[str], List[str]]:
        """Order nodes with Kahn's algorithm.

        Returns:
            Tuple of (ordered nodes, nodes left on a cycle)
        """
        in_degree = {node: 0 for node in self.nodes}
        for targets in self.edges.values():
            for target in targets:
                in_degree[target] += 1

        queue = deque(node for node in self.nodes if in_degree[node] == 0)
        ordered = []
        while queue:
            node = queue.popleft()
            ordered.append(node)
            for neighbor in sorted(self.edges.get(node, ())):
                in_degree[neighbor] -= 1
                if in_degree[neighbor] == 0:
                    queue.append(neighbor)

        remaining = [node for node in self.nodes if in_degree[node] > 0]
        return ordered, remaining


def detect_expression_cycles(schema: FormSchema) -> List[str]:
    """Find circular dependencies between field expressions.

    Args:
        schema: Parsed form schema

    Returns:
        List of error messages (empty if the graph is acyclic)

    Example:
        >>> detect_expression_cycles(schema)
        ['Circular dependency detected involving fields: a, b']
    """
    _, remaining = DependencyGraph.from_schema(schema).topological_order()
    if remaining:
        logger.debug(f"Dependency cycle among {remaining}")
        return [f"Circular dependency detected involving fields: {', '.join(remaining)}"]
    return []


def dependency_order(schema: FormSchema) -> List[str]:
    """Node ids ordered so every field comes after the fields it depends on.

    Nodes on a cycle are appended in document order.
    """
    ordered, remaining = DependencyGraph.from_schema(schema).topological_order()
    return ordered + remaining
