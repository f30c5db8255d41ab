"""
SQLite persistence for the graph, score history and sticky overrides.

Schema:
    concepts:              Concept nodes
    dependency_edges:      Prerequisite edges with strengths
    understanding_records: Append-only score history
    exam_weight_overrides: Sticky manual exam weights

Values round-trip exactly: floats are stored as REAL (IEEE double),
timestamps as ISO-8601 text, list fields as JSON.

Usage:
    repo = SQLiteGraphRepository("learnpath.db")
    repo.save_graph(store.all_concepts(), store.all_edges())
    nodes, edges = repo.load_graph()
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator

from .errors import PersistenceError
from .models import ConceptNode, DependencyEdge, Misconception, UnderstandingRecord


logger = logging.getLogger(__name__)


class SQLiteGraphRepository:
    """SQLite-backed store for everything the core must reproduce after reload."""

    def __init__(self, db_path: str | Path = ":memory:"):
        """
        Initialize SQLite repository.

        Args:
            db_path: Path to SQLite database, or ":memory:" for in-memory
        """
        self.db_path = str(db_path)
        self._is_memory = self.db_path == ":memory:"
        self._shared_conn: sqlite3.Connection | None = None

        if self._is_memory:
            # For in-memory databases, keep a single shared connection
            self._shared_conn = sqlite3.connect(":memory:", check_same_thread=False)
            self._shared_conn.row_factory = sqlite3.Row

        self._init_schema()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get a database connection; commits on success, rolls back on error."""
        if self._is_memory and self._shared_conn:
            conn = self._shared_conn
            close = False
        else:
            try:
                conn = sqlite3.connect(self.db_path)
            except sqlite3.Error as e:
                raise PersistenceError(f"Cannot open {self.db_path}: {e}") from e
            conn.row_factory = sqlite3.Row
            close = True
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            if close:
                conn.close()

    def _init_schema(self) -> None:
        """Initialize database schema."""
        with self._get_connection() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS concepts (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    description TEXT NOT NULL,
                    exam_weight REAL NOT NULL,
                    complexity INTEGER NOT NULL
                );

                CREATE TABLE IF NOT EXISTS dependency_edges (
                    prerequisite_id TEXT NOT NULL,
                    dependent_id TEXT NOT NULL,
                    strength REAL NOT NULL,
                    PRIMARY KEY (prerequisite_id, dependent_id)
                );

                CREATE TABLE IF NOT EXISTS understanding_records (
                    sequence INTEGER PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    concept_id TEXT NOT NULL,
                    completeness REAL NOT NULL,
                    coherence REAL NOT NULL,
                    question_accuracy REAL NOT NULL,
                    score REAL NOT NULL,
                    misconceptions TEXT NOT NULL,      -- JSON array
                    prerequisite_gaps TEXT NOT NULL,   -- JSON array
                    timestamp TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_records_user_concept
                    ON understanding_records(user_id, concept_id);

                CREATE TABLE IF NOT EXISTS exam_weight_overrides (
                    concept_id TEXT PRIMARY KEY,
                    weight REAL NOT NULL
                );
            """)

    # ─────────────────────────────────────────────────────────────────────────
    # Graph
    # ─────────────────────────────────────────────────────────────────────────

    def save_graph(self, nodes: Iterable[ConceptNode], edges: Iterable[DependencyEdge]) -> None:
        """Replace the stored graph with `nodes` and `edges`."""
        nodes = list(nodes)
        edges = list(edges)
        with self._get_connection() as conn:
            self._write_graph(conn, nodes, edges)
        logger.info(f"Saved graph: {len(nodes)} concept(s), {len(edges)} edge(s)")

    def _write_graph(
        self,
        conn: sqlite3.Connection,
        nodes: list[ConceptNode],
        edges: list[DependencyEdge],
    ) -> None:
        conn.execute("DELETE FROM dependency_edges")
        conn.execute("DELETE FROM concepts")
        conn.executemany(
            "INSERT INTO concepts (id, name, description, exam_weight, complexity) "
            "VALUES (?, ?, ?, ?, ?)",
            [(n.id, n.name, n.description, n.exam_weight, n.complexity) for n in nodes],
        )
        conn.executemany(
            "INSERT INTO dependency_edges (prerequisite_id, dependent_id, strength) "
            "VALUES (?, ?, ?)",
            [(e.prerequisite_id, e.dependent_id, e.strength) for e in edges],
        )

    def load_graph(self) -> tuple[list[ConceptNode], list[DependencyEdge]]:
        """Stored nodes and edges, each sorted by key."""
        with self._get_connection() as conn:
            node_rows = conn.execute("SELECT * FROM concepts ORDER BY id").fetchall()
            edge_rows = conn.execute(
                "SELECT * FROM dependency_edges ORDER BY prerequisite_id, dependent_id"
            ).fetchall()

        nodes = [
            ConceptNode(
                id=row["id"],
                name=row["name"],
                description=row["description"],
                exam_weight=row["exam_weight"],
                complexity=row["complexity"],
            )
            for row in node_rows
        ]
        edges = [
            DependencyEdge(
                prerequisite_id=row["prerequisite_id"],
                dependent_id=row["dependent_id"],
                strength=row["strength"],
            )
            for row in edge_rows
        ]
        return nodes, edges

    # ─────────────────────────────────────────────────────────────────────────
    # Understanding records
    # ─────────────────────────────────────────────────────────────────────────

    def save_records(self, records: Iterable[UnderstandingRecord]) -> None:
        """Replace the stored score history."""
        records = list(records)
        with self._get_connection() as conn:
            self._write_records(conn, records)
        logger.info(f"Saved {len(records)} understanding record(s)")

    def _write_records(self, conn: sqlite3.Connection, records: list[UnderstandingRecord]) -> None:
        conn.execute("DELETE FROM understanding_records")
        conn.executemany("""
            INSERT INTO understanding_records
            (sequence, user_id, concept_id, completeness, coherence,
             question_accuracy, score, misconceptions, prerequisite_gaps, timestamp)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, [
            (
                r.sequence,
                r.user_id,
                r.concept_id,
                r.completeness,
                r.coherence,
                r.question_accuracy,
                r.score,
                json.dumps([m.to_dict() for m in r.misconceptions]),
                json.dumps(sorted(r.prerequisite_gaps)),
                r.timestamp.isoformat(),
            )
            for r in records
        ])

    def load_records(self) -> list[UnderstandingRecord]:
        """Stored score history in append order."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM understanding_records ORDER BY sequence"
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def _row_to_record(self, row: sqlite3.Row) -> UnderstandingRecord:
        """Convert a database row to UnderstandingRecord."""
        return UnderstandingRecord(
            user_id=row["user_id"],
            concept_id=row["concept_id"],
            completeness=row["completeness"],
            coherence=row["coherence"],
            question_accuracy=row["question_accuracy"],
            score=row["score"],
            misconceptions=tuple(
                Misconception.from_dict(m) for m in json.loads(row["misconceptions"])
            ),
            prerequisite_gaps=frozenset(json.loads(row["prerequisite_gaps"])),
            timestamp=datetime.fromisoformat(row["timestamp"]),
            sequence=row["sequence"],
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Overrides
    # ─────────────────────────────────────────────────────────────────────────

    def save_overrides(self, overrides: dict[str, float]) -> None:
        with self._get_connection() as conn:
            self._write_overrides(conn, overrides)

    def _write_overrides(self, conn: sqlite3.Connection, overrides: dict[str, float]) -> None:
        conn.execute("DELETE FROM exam_weight_overrides")
        conn.executemany(
            "INSERT INTO exam_weight_overrides (concept_id, weight) VALUES (?, ?)",
            sorted(overrides.items()),
        )

    def load_overrides(self) -> dict[str, float]:
        with self._get_connection() as conn:
            rows = conn.execute("SELECT * FROM exam_weight_overrides").fetchall()
        return {row["concept_id"]: row["weight"] for row in rows}

    # ─────────────────────────────────────────────────────────────────────────
    # Full state
    # ─────────────────────────────────────────────────────────────────────────

    def save_state(
        self,
        nodes: Iterable[ConceptNode],
        edges: Iterable[DependencyEdge],
        records: Iterable[UnderstandingRecord],
        overrides: dict[str, float],
    ) -> None:
        """
        Replace graph, score history and overrides in one transaction.

        On any failure the previously stored state is left intact.
        """
        nodes = list(nodes)
        edges = list(edges)
        records = list(records)
        with self._get_connection() as conn:
            self._write_graph(conn, nodes, edges)
            self._write_records(conn, records)
            self._write_overrides(conn, overrides)
        logger.info(
            f"Saved state: {len(nodes)} concept(s), {len(edges)} edge(s), "
            f"{len(records)} record(s), {len(overrides)} override(s)"
        )

    def close(self) -> None:
        if self._shared_conn is not None:
            self._shared_conn.close()
            self._shared_conn = None
