"""
Prerequisite graph store.

Implements:
- CRUD for concept nodes and prerequisite edges
- Constructive cycle rejection (DFS reachability check before insert)
- Downstream-impact centrality (cached per graph version)
- Integrity validation (acyclicity + reachability from roots)
- Topological level partition (Kahn's algorithm)
- Bulk import with defensive re-validation
- Change auditing

Concurrency model:
    Mutations are serialized behind a single writer lock. Each accepted
    mutation publishes a new immutable GraphSnapshot (copy-on-write), so
    readers holding a snapshot never see a half-applied or rolled-back edit.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from .collaborators import ConceptCandidate, EdgeCandidate
from .errors import (
    CycleDetected,
    DuplicateConcept,
    DuplicateEdge,
    GraphIntegrityViolation,
    SelfLoop,
    UnknownConcept,
    UnknownEdge,
)
from .models import (
    ChangeType,
    ChangelogEntry,
    ConceptNode,
    DependencyEdge,
    IntegrityReport,
    check_complexity,
    check_unit_interval,
    utcnow,
)


logger = logging.getLogger(__name__)

EdgeKey = tuple[str, str]


def _build_indexes(
    concepts: dict[str, ConceptNode],
    edges: dict[EdgeKey, DependencyEdge],
) -> tuple[dict[str, frozenset[str]], dict[str, frozenset[str]]]:
    """Rebuild the prerequisite and dependent index mappings from the edge set."""
    prereqs: dict[str, set[str]] = {cid: set() for cid in concepts}
    dependents: dict[str, set[str]] = {cid: set() for cid in concepts}
    for prereq_id, dependent_id in edges:
        prereqs[dependent_id].add(prereq_id)
        dependents[prereq_id].add(dependent_id)
    return (
        {cid: frozenset(ids) for cid, ids in prereqs.items()},
        {cid: frozenset(ids) for cid, ids in dependents.items()},
    )


@dataclass
class GraphSnapshot:
    """
    An immutable, versioned view of the graph.

    All read-side algorithms live here so that a caller working from one
    snapshot gets mutually consistent answers. The mappings are read-only
    proxies; mutate through GraphStore.
    """
    version: int
    concepts: Mapping[str, ConceptNode]
    edges: Mapping[EdgeKey, DependencyEdge]
    prerequisites: Mapping[str, frozenset[str]]
    dependents: Mapping[str, frozenset[str]]
    _centrality: dict[str, int] | None = field(default=None, repr=False)

    @classmethod
    def build(
        cls,
        version: int,
        concepts: dict[str, ConceptNode],
        edges: dict[EdgeKey, DependencyEdge],
    ) -> "GraphSnapshot":
        prereqs, dependents = _build_indexes(concepts, edges)
        return cls(
            version=version,
            concepts=MappingProxyType(concepts),
            edges=MappingProxyType(edges),
            prerequisites=MappingProxyType(prereqs),
            dependents=MappingProxyType(dependents),
        )

    def __contains__(self, concept_id: str) -> bool:
        return concept_id in self.concepts

    def __len__(self) -> int:
        return len(self.concepts)

    # ─────────────────────────────────────────────────────────────────────────
    # Traversal
    # ─────────────────────────────────────────────────────────────────────────

    def roots(self) -> list[str]:
        """Concepts with zero prerequisites, sorted by id."""
        return sorted(cid for cid, ids in self.prerequisites.items() if not ids)

    def descendants(self, concept_id: str) -> set[str]:
        """All concepts reachable over the dependents relation (BFS)."""
        return self._bfs(concept_id, self.dependents)

    def ancestors(self, concept_id: str) -> set[str]:
        """All concepts reachable over the prerequisite relation (BFS)."""
        return self._bfs(concept_id, self.prerequisites)

    def _bfs(self, start: str, adjacency: Mapping[str, frozenset[str]]) -> set[str]:
        if start not in self.concepts:
            raise UnknownConcept(start)
        seen: set[str] = set()
        queue = deque([start])
        while queue:
            current = queue.popleft()
            for neighbor in adjacency.get(current, ()):
                if neighbor not in seen:
                    seen.add(neighbor)
                    queue.append(neighbor)
        seen.discard(start)
        return seen

    def find_path(self, start: str, goal: str) -> list[str] | None:
        """
        Depth-first search from `start` to `goal` along edge direction.

        Returns the node path if `goal` is reachable, None otherwise.
        """
        if start == goal:
            return [start]

        # Iterative so that chain depth is not bounded by the recursion limit
        parent: dict[str, str | None] = {start: None}
        stack = [(start, iter(sorted(self.dependents.get(start, ()))))]
        while stack:
            current, neighbors = stack[-1]
            nxt = next(neighbors, None)
            if nxt is None:
                stack.pop()
                continue
            if nxt in parent:
                continue
            parent[nxt] = current
            if nxt == goal:
                path = [nxt]
                while parent[path[-1]] is not None:
                    path.append(parent[path[-1]])
                return path[::-1]
            stack.append((nxt, iter(sorted(self.dependents.get(nxt, ())))))
        return None

    # ─────────────────────────────────────────────────────────────────────────
    # Centrality
    # ─────────────────────────────────────────────────────────────────────────

    def centrality(self) -> dict[str, int]:
        """
        Downstream impact per concept: the count of distinct concepts
        reachable over the dependents relation.

        Computed once per snapshot and cached.
        """
        if self._centrality is None:
            self._centrality = {
                cid: len(self.descendants(cid)) for cid in self.concepts
            }
            logger.debug(f"Computed centrality for graph v{self.version}")
        return self._centrality

    def normalized_centrality(self) -> dict[str, float]:
        """Centrality divided by the graph maximum (all zeros when edgeless)."""
        raw = self.centrality()
        top = max(raw.values(), default=0)
        if top == 0:
            return {cid: 0.0 for cid in raw}
        return {cid: value / top for cid, value in raw.items()}

    # ─────────────────────────────────────────────────────────────────────────
    # Ordering and validation
    # ─────────────────────────────────────────────────────────────────────────

    def _kahn_levels(self) -> tuple[list[list[str]], set[str]]:
        """Level partition plus the set of nodes left over (non-empty iff cyclic)."""
        in_degree = {cid: len(ids) for cid, ids in self.prerequisites.items()}
        frontier = sorted(cid for cid, deg in in_degree.items() if deg == 0)
        levels: list[list[str]] = []
        while frontier:
            levels.append(frontier)
            next_frontier: list[str] = []
            for cid in frontier:
                for dependent in self.dependents[cid]:
                    in_degree[dependent] -= 1
                    if in_degree[dependent] == 0:
                        next_frontier.append(dependent)
            frontier = sorted(next_frontier)
        leftover = {cid for cid, deg in in_degree.items() if deg > 0}
        return levels, leftover

    def topological_levels(self) -> list[list[str]]:
        """
        Partition concepts into levels.

        Level 0 holds concepts with no prerequisites; level k holds concepts
        whose prerequisites all sit in levels < k. Ids are sorted within a
        level.
        """
        levels, leftover = self._kahn_levels()
        if leftover:
            raise GraphIntegrityViolation(
                f"Topological sort failed; {len(leftover)} concept(s) on a cycle",
                report=self.validate_integrity(),
                internal=True,
            )
        return levels

    def level_index(self) -> dict[str, int]:
        """Concept id -> topological level."""
        return {
            cid: depth
            for depth, level in enumerate(self.topological_levels())
            for cid in level
        }

    def validate_integrity(self) -> IntegrityReport:
        """
        Check acyclicity and reachability.

        Every concept must be reachable from some zero-prerequisite root;
        a concept with no edges at all is isolated when the graph has more
        than one concept.
        """
        report = IntegrityReport()
        _, leftover = self._kahn_levels()
        if leftover:
            report.is_acyclic = False
            report.cycle = self._find_cycle(leftover)

        reachable: set[str] = set()
        for root in self.roots():
            reachable.add(root)
            reachable |= self.descendants(root)
        report.unreachable = set(self.concepts) - reachable

        if len(self.concepts) > 1:
            report.isolated = {
                cid for cid in self.concepts
                if not self.prerequisites[cid] and not self.dependents[cid]
            }
        return report

    def _find_cycle(self, candidates: set[str]) -> list[str]:
        """Return one cycle among `candidates` as a closed node path."""
        for start in sorted(candidates):
            for nxt in sorted(self.dependents[start]):
                path = self.find_path(nxt, start)
                if path:
                    return [start] + path
        return sorted(candidates)

    def is_topological(self, order: list[str]) -> bool:
        """True if no concept in `order` precedes one of its prerequisites."""
        position = {cid: i for i, cid in enumerate(order)}
        for cid, i in position.items():
            for prereq in self.prerequisites.get(cid, ()):
                if prereq in position and position[prereq] > i:
                    return False
        return True

    def stats(self) -> dict[str, Any]:
        """Graph summary statistics."""
        levels, leftover = self._kahn_levels()
        return {
            "version": self.version,
            "total_concepts": len(self.concepts),
            "total_edges": len(self.edges),
            "roots": len(self.roots()),
            "max_depth": len(levels) - 1 if levels and not leftover else 0,
        }


class GraphStore:
    """
    In-memory prerequisite graph with invariant enforcement.

    Canonical node and edge data are held in id-indexed mappings; the
    prerequisite/dependent indexes and centrality are derived from them.
    Every mutation either completes fully or leaves the graph untouched.
    """

    def __init__(self) -> None:
        self._write_lock = threading.RLock()
        self._snapshot = GraphSnapshot.build(0, {}, {})
        self._changelog: list[ChangelogEntry] = []

    # ─────────────────────────────────────────────────────────────────────────
    # Snapshots
    # ─────────────────────────────────────────────────────────────────────────

    def snapshot(self) -> GraphSnapshot:
        """Current consistent view of the graph."""
        return self._snapshot

    @property
    def version(self) -> int:
        return self._snapshot.version

    def _publish(
        self,
        concepts: dict[str, ConceptNode],
        edges: dict[EdgeKey, DependencyEdge],
        event_type: ChangeType,
        entity_id: str,
        details: dict[str, Any],
    ) -> GraphSnapshot:
        """Swap in a new snapshot. Caller must hold the write lock."""
        snapshot = GraphSnapshot.build(self._snapshot.version + 1, concepts, edges)
        self._snapshot = snapshot
        self._changelog.append(ChangelogEntry(
            timestamp=utcnow(),
            event_type=event_type,
            entity_id=entity_id,
            graph_version=snapshot.version,
            details=details,
        ))
        return snapshot

    # ─────────────────────────────────────────────────────────────────────────
    # Concept Operations
    # ─────────────────────────────────────────────────────────────────────────

    def add_concept(self, node: ConceptNode) -> ConceptNode:
        """Add a concept node. Raises DuplicateConcept if the id exists."""
        with self._write_lock:
            current = self._snapshot
            if node.id in current.concepts:
                logger.warning(f"Rejected duplicate concept: {node.id}")
                raise DuplicateConcept(node.id)
            concepts = dict(current.concepts)
            concepts[node.id] = node
            self._publish(
                concepts, dict(current.edges),
                ChangeType.NODE_CREATED, node.id,
                {"name": node.name, "complexity": node.complexity},
            )
        logger.info(f"Created concept: {node.id} - {node.name}")
        return node

    def get_concept(self, concept_id: str) -> ConceptNode | None:
        """Get a concept by ID."""
        return self._snapshot.concepts.get(concept_id)

    def all_concepts(self) -> list[ConceptNode]:
        """All concepts, sorted by id."""
        snapshot = self._snapshot
        return [snapshot.concepts[cid] for cid in sorted(snapshot.concepts)]

    def update_concept(self, concept_id: str, **updates: Any) -> ConceptNode:
        """
        Update concept properties and record changes.

        Accepts `name`, `description`, `exam_weight` and `complexity`.
        """
        allowed = {"name", "description", "exam_weight", "complexity"}
        unknown_fields = set(updates) - allowed
        if unknown_fields:
            raise TypeError(f"Cannot update fields: {sorted(unknown_fields)}")
        if "exam_weight" in updates:
            check_unit_interval("exam_weight", updates["exam_weight"])
        if "complexity" in updates:
            check_complexity(updates["complexity"])

        with self._write_lock:
            current = self._snapshot
            old = current.concepts.get(concept_id)
            if old is None:
                raise UnknownConcept(concept_id)
            new = replace(old, **updates)
            if new == old:
                return old
            concepts = dict(current.concepts)
            concepts[concept_id] = new
            changes = {
                name: {"old_value": getattr(old, name), "new_value": value}
                for name, value in updates.items()
                if getattr(old, name) != value
            }
            self._publish(
                concepts, dict(current.edges),
                ChangeType.PROPERTY_UPDATE, concept_id, changes,
            )
        logger.info(f"Updated concept: {concept_id}, fields: {list(changes)}")
        return new

    def update_exam_weights(self, weights: dict[str, float]) -> int:
        """
        Apply a calibrated weight map in one mutation.

        Returns the number of concepts whose weight changed.
        """
        for cid, value in weights.items():
            check_unit_interval(f"exam_weight[{cid}]", value)

        with self._write_lock:
            current = self._snapshot
            for cid in weights:
                if cid not in current.concepts:
                    raise UnknownConcept(cid)
            concepts = dict(current.concepts)
            changed = {}
            for cid, value in weights.items():
                old = concepts[cid]
                if old.exam_weight != value:
                    concepts[cid] = replace(old, exam_weight=value)
                    changed[cid] = {"old_value": old.exam_weight, "new_value": value}
            if not changed:
                return 0
            self._publish(
                concepts, dict(current.edges),
                ChangeType.PROPERTY_UPDATE, "exam_weight", changed,
            )
        logger.info(f"Updated exam weights for {len(changed)} concept(s)")
        return len(changed)

    def remove_concept(self, concept_id: str) -> list[DependencyEdge]:
        """
        Delete a concept and every edge touching it.

        Returns the removed edges.
        """
        with self._write_lock:
            current = self._snapshot
            if concept_id not in current.concepts:
                raise UnknownConcept(concept_id)
            concepts = dict(current.concepts)
            del concepts[concept_id]
            edges = {}
            removed = []
            for key, edge in current.edges.items():
                if concept_id in key:
                    removed.append(edge)
                else:
                    edges[key] = edge
            self._publish(
                concepts, edges,
                ChangeType.NODE_DELETED, concept_id,
                {"removed_edges": [list(e.key) for e in removed]},
            )
        logger.info(f"Deleted concept: {concept_id} ({len(removed)} edge(s) cascaded)")
        return removed

    # ─────────────────────────────────────────────────────────────────────────
    # Edge Operations
    # ─────────────────────────────────────────────────────────────────────────

    def add_edge(
        self,
        prerequisite_id: str,
        dependent_id: str,
        strength: float = 1.0,
    ) -> DependencyEdge:
        """
        Add a prerequisite edge: `prerequisite_id` before `dependent_id`.

        Raises SelfLoop, UnknownConcept, DuplicateEdge or CycleDetected;
        the graph is unchanged on any failure.
        """
        if prerequisite_id == dependent_id:
            raise SelfLoop(prerequisite_id)
        edge = DependencyEdge(prerequisite_id, dependent_id, strength)

        with self._write_lock:
            current = self._snapshot
            for cid in (prerequisite_id, dependent_id):
                if cid not in current.concepts:
                    raise UnknownConcept(cid)
            if edge.key in current.edges:
                raise DuplicateEdge(prerequisite_id, dependent_id)

            cycle = self.detect_cycle(prerequisite_id, dependent_id, current)
            if cycle:
                logger.warning(f"Rejected edge {prerequisite_id} -> {dependent_id}: cycle")
                raise CycleDetected(cycle)

            edges = dict(current.edges)
            edges[edge.key] = edge
            self._publish(
                dict(current.concepts), edges,
                ChangeType.EDGE_CREATED, f"{prerequisite_id}->{dependent_id}",
                {"strength": edge.strength},
            )
        logger.info(f"Added prerequisite: {prerequisite_id} -> {dependent_id}")
        return edge

    def detect_cycle(
        self,
        prerequisite_id: str,
        dependent_id: str,
        snapshot: GraphSnapshot | None = None,
    ) -> list[str] | None:
        """
        Detect if adding prerequisite -> dependent would create a cycle.

        Uses DFS to check whether the dependent already reaches the
        prerequisite. Returns the would-be cycle path, or None.
        """
        snapshot = snapshot or self._snapshot
        path = snapshot.find_path(dependent_id, prerequisite_id)
        if path is None:
            return None
        return path + [dependent_id]

    def get_edge(self, prerequisite_id: str, dependent_id: str) -> DependencyEdge | None:
        return self._snapshot.edges.get((prerequisite_id, dependent_id))

    def all_edges(self) -> list[DependencyEdge]:
        """All edges, sorted by (prerequisite, dependent)."""
        snapshot = self._snapshot
        return [snapshot.edges[key] for key in sorted(snapshot.edges)]

    def update_edge_strength(
        self,
        prerequisite_id: str,
        dependent_id: str,
        strength: float,
    ) -> DependencyEdge:
        """Change the strength of an existing edge."""
        check_unit_interval("strength", strength)
        with self._write_lock:
            current = self._snapshot
            old = current.edges.get((prerequisite_id, dependent_id))
            if old is None:
                raise UnknownEdge(prerequisite_id, dependent_id)
            new = replace(old, strength=strength)
            edges = dict(current.edges)
            edges[new.key] = new
            self._publish(
                dict(current.concepts), edges,
                ChangeType.EDGE_UPDATED, f"{prerequisite_id}->{dependent_id}",
                {"old_value": old.strength, "new_value": strength},
            )
        logger.info(f"Updated edge strength: {prerequisite_id} -> {dependent_id} = {strength}")
        return new

    def remove_edge(self, prerequisite_id: str, dependent_id: str) -> DependencyEdge:
        """Delete one edge, leaving both concepts in place."""
        with self._write_lock:
            current = self._snapshot
            key = (prerequisite_id, dependent_id)
            if key not in current.edges:
                raise UnknownEdge(prerequisite_id, dependent_id)
            edges = dict(current.edges)
            removed = edges.pop(key)
            self._publish(
                dict(current.concepts), edges,
                ChangeType.EDGE_DELETED, f"{prerequisite_id}->{dependent_id}",
                {"strength": removed.strength},
            )
        logger.info(f"Removed prerequisite: {prerequisite_id} -> {dependent_id}")
        return removed

    # ─────────────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────────────

    def prerequisites_of(self, concept_id: str) -> frozenset[str]:
        """Direct prerequisites of a concept."""
        snapshot = self._snapshot
        if concept_id not in snapshot.concepts:
            raise UnknownConcept(concept_id)
        return snapshot.prerequisites[concept_id]

    def dependents_of(self, concept_id: str) -> frozenset[str]:
        """Direct dependents of a concept."""
        snapshot = self._snapshot
        if concept_id not in snapshot.concepts:
            raise UnknownConcept(concept_id)
        return snapshot.dependents[concept_id]

    def ancestors(self, concept_id: str) -> set[str]:
        return self._snapshot.ancestors(concept_id)

    def descendants(self, concept_id: str) -> set[str]:
        return self._snapshot.descendants(concept_id)

    def compute_centrality(self) -> dict[str, int]:
        """Downstream-impact centrality for every concept (cached per version)."""
        return self._snapshot.centrality()

    def validate_integrity(self) -> IntegrityReport:
        """Validate acyclicity and reachability of the current graph."""
        report = self._snapshot.validate_integrity()
        if not report.ok:
            logger.warning(f"Integrity check failed on v{self.version}: {report.describe()}")
        return report

    def topological_levels(self) -> list[list[str]]:
        return self._snapshot.topological_levels()

    def stats(self) -> dict[str, Any]:
        return self._snapshot.stats()

    # ─────────────────────────────────────────────────────────────────────────
    # Batch Operations
    # ─────────────────────────────────────────────────────────────────────────

    def import_graph(
        self,
        nodes: Iterable[ConceptNode],
        edges: Iterable[DependencyEdge],
        replace_existing: bool = False,
    ) -> GraphSnapshot:
        """
        Bulk-load nodes and edges in one mutation.

        Edges skip the per-edge cycle check; the staged graph is re-validated
        as a whole and rejected with GraphIntegrityViolation if it is cyclic.
        Nothing is published unless the whole batch is valid.
        """
        nodes = list(nodes)
        edges = list(edges)
        with self._write_lock:
            current = self._snapshot
            concepts = {} if replace_existing else dict(current.concepts)
            staged_edges = {} if replace_existing else dict(current.edges)

            for node in nodes:
                if node.id in concepts:
                    raise DuplicateConcept(node.id)
                concepts[node.id] = node
            for edge in edges:
                if edge.prerequisite_id == edge.dependent_id:
                    raise SelfLoop(edge.prerequisite_id)
                for cid in edge.key:
                    if cid not in concepts:
                        raise UnknownConcept(cid)
                if edge.key in staged_edges:
                    raise DuplicateEdge(*edge.key)
                staged_edges[edge.key] = edge

            staged = GraphSnapshot.build(current.version + 1, concepts, staged_edges)
            report = staged.validate_integrity()
            if not report.is_acyclic:
                logger.warning(f"Rejected bulk import: {report.describe()}")
                raise GraphIntegrityViolation(
                    f"Bulk import would create a cycle: {' -> '.join(report.cycle)}",
                    report=report,
                )
            snapshot = self._publish(
                concepts, staged_edges,
                ChangeType.BULK_IMPORT, "graph",
                {"nodes": len(nodes), "edges": len(edges), "replace": replace_existing},
            )
        logger.info(f"Imported {len(nodes)} concept(s) and {len(edges)} edge(s)")
        return snapshot

    def ingest_candidates(
        self,
        concepts: Iterable[ConceptCandidate],
        edges: Iterable[EdgeCandidate],
    ) -> GraphSnapshot:
        """Load text-analysis output: new concepts plus their edges."""
        return self.import_graph(
            [candidate.to_node() for candidate in concepts],
            [candidate.to_edge() for candidate in edges],
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Changelog
    # ─────────────────────────────────────────────────────────────────────────

    def get_changelog(
        self,
        entity_id: str | None = None,
        limit: int = 100,
    ) -> list[ChangelogEntry]:
        """Get changelog entries, optionally filtered by entity."""
        entries = list(self._changelog)
        if entity_id:
            entries = [e for e in entries if e.entity_id == entity_id]
        return entries[-limit:]
