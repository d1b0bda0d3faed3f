"""SQLite entity stores for series, books, characters, world, arcs, timeline and canon."""

import json
import logging
import shutil
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Iterator, Optional

from config.exceptions import (
    ConcurrentModificationError,
    EntityNotFoundError,
    SeriesNotFoundError,
    ValidationError,
)
from models.arc import NarrativeArc
from models.canon import CanonRule, CanonViolation, Violation
from models.character import Character, CorePersonality
from models.enums import ArcStatus, ResolutionStatus, WorldElementType
from models.relationship import CharacterRelationship
from models.series import Book, Series
from models.timeline import TimelineEvent
from models.world import WorldElement, WorldRules

logger = logging.getLogger(__name__)

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS series (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    author_id TEXT NOT NULL,
    title TEXT NOT NULL,
    genre TEXT NOT NULL,
    target_book_count INTEGER DEFAULT 1,
    tone TEXT DEFAULT '',
    pacing TEXT DEFAULT '',
    target_audience TEXT DEFAULT '',
    premise TEXT DEFAULT '',
    main_conflict TEXT DEFAULT '',
    planned_ending TEXT DEFAULT '',
    themes TEXT DEFAULT '[]',
    status TEXT DEFAULT 'planning',
    is_archived BOOLEAN DEFAULT FALSE,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS books (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    series_id INTEGER NOT NULL REFERENCES series(id),
    book_number INTEGER NOT NULL,
    title TEXT NOT NULL,
    word_count INTEGER DEFAULT 0,
    chapter_count INTEGER DEFAULT 0,
    status TEXT DEFAULT 'planning',
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS characters (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    series_id INTEGER NOT NULL REFERENCES series(id),
    name TEXT NOT NULL,
    aliases TEXT DEFAULT '[]',
    role TEXT DEFAULT 'supporting',
    status TEXT DEFAULT 'active',
    first_appears_book INTEGER NOT NULL,
    retired_in_book INTEGER,
    core_personality TEXT DEFAULT '{}',
    physical_description TEXT DEFAULT '',
    dialogue_style TEXT DEFAULT '',
    canon_lock_level TEXT DEFAULT 'soft',
    locked_attributes TEXT DEFAULT '[]',
    version INTEGER DEFAULT 1,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS world_elements (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    series_id INTEGER NOT NULL REFERENCES series(id),
    element_type TEXT NOT NULL,
    name TEXT NOT NULL,
    aliases TEXT DEFAULT '[]',
    short_description TEXT DEFAULT '',
    full_description TEXT DEFAULT '',
    visual_description TEXT DEFAULT '',
    category TEXT DEFAULT '',
    tags TEXT DEFAULT '[]',
    introduced_in_book INTEGER NOT NULL,
    destroyed_in_book INTEGER,
    rules TEXT DEFAULT '{}',
    canon_lock_level TEXT DEFAULT 'soft',
    is_active BOOLEAN DEFAULT TRUE,
    version INTEGER DEFAULT 1,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS narrative_arcs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    series_id INTEGER NOT NULL REFERENCES series(id),
    arc_name TEXT NOT NULL,
    arc_type TEXT NOT NULL,
    arc_status TEXT DEFAULT 'setup',
    arc_description TEXT DEFAULT '',
    starts_in_book INTEGER NOT NULL,
    ends_in_book INTEGER,
    themes TEXT DEFAULT '[]',
    setup_points TEXT DEFAULT '[]',
    rising_action_points TEXT DEFAULT '[]',
    climax_point TEXT DEFAULT '',
    falling_action_points TEXT DEFAULT '[]',
    resolution_point TEXT DEFAULT '',
    primary_characters TEXT DEFAULT '[]',
    completion_percentage INTEGER DEFAULT 0,
    version INTEGER DEFAULT 1,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS canon_rules (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    series_id INTEGER NOT NULL REFERENCES series(id),
    rule_category TEXT NOT NULL,
    rule_name TEXT NOT NULL,
    rule_description TEXT NOT NULL,
    rule_type TEXT DEFAULT 'must',
    lock_level TEXT DEFAULT 'hard',
    applies_from_book INTEGER NOT NULL,
    applies_until_book INTEGER,
    violation_message TEXT DEFAULT '',
    valid_examples TEXT DEFAULT '[]',
    invalid_examples TEXT DEFAULT '[]',
    applies_to_entity_ids TEXT DEFAULT '[]',
    is_active BOOLEAN DEFAULT TRUE,
    version INTEGER DEFAULT 1,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS character_relationships (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    series_id INTEGER NOT NULL REFERENCES series(id),
    character_a_id INTEGER NOT NULL REFERENCES characters(id),
    character_b_id INTEGER NOT NULL REFERENCES characters(id),
    type_a_to_b TEXT DEFAULT 'neutral',
    type_b_to_a TEXT DEFAULT 'neutral',
    intensity_a_to_b INTEGER DEFAULT 5,
    intensity_b_to_a INTEGER DEFAULT 5,
    current_dynamic TEXT DEFAULT '',
    tension_points TEXT DEFAULT '[]',
    shared_history TEXT DEFAULT '[]',
    started_in_book INTEGER NOT NULL,
    ended_in_book INTEGER,
    ending_reason TEXT DEFAULT '',
    canon_lock_level TEXT DEFAULT 'soft',
    version INTEGER DEFAULT 1,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS timeline_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    series_id INTEGER NOT NULL REFERENCES series(id),
    event_name TEXT NOT NULL,
    event_description TEXT DEFAULT '',
    event_type TEXT DEFAULT 'current',
    in_universe_date TEXT DEFAULT '',
    relative_timing TEXT DEFAULT '',
    sequence_number INTEGER DEFAULT 0,
    first_mentioned_book INTEGER NOT NULL,
    referenced_in_books TEXT DEFAULT '[]',
    involved_characters TEXT DEFAULT '[]',
    involved_locations TEXT DEFAULT '[]',
    consequences TEXT DEFAULT '[]',
    is_canon BOOLEAN DEFAULT TRUE,
    canon_lock_level TEXT DEFAULT 'soft',
    version INTEGER DEFAULT 1,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS canon_violations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    series_id INTEGER NOT NULL REFERENCES series(id),
    rule_id INTEGER REFERENCES canon_rules(id),
    book_number INTEGER NOT NULL,
    severity TEXT NOT NULL,
    description TEXT DEFAULT '',
    excerpt TEXT DEFAULT '',
    matched_example TEXT,
    resolution_status TEXT DEFAULT 'pending',
    override_reason TEXT,
    detected_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    resolved_at TIMESTAMP
);
"""

_INDEX_SQL = [
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_books_series_number ON books(series_id, book_number)",
    "CREATE INDEX IF NOT EXISTS idx_series_author ON series(author_id)",
    "CREATE INDEX IF NOT EXISTS idx_characters_series ON characters(series_id)",
    "CREATE INDEX IF NOT EXISTS idx_world_elements_series ON world_elements(series_id)",
    "CREATE INDEX IF NOT EXISTS idx_arcs_series ON narrative_arcs(series_id)",
    "CREATE INDEX IF NOT EXISTS idx_rules_series ON canon_rules(series_id)",
    "CREATE INDEX IF NOT EXISTS idx_violations_series_status ON canon_violations(series_id, resolution_status)",
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_relationships_pair "
    "ON character_relationships(series_id, character_a_id, character_b_id)",
    "CREATE INDEX IF NOT EXISTS idx_timeline_series_sequence ON timeline_events(series_id, sequence_number)",
]

# Columns that carry a book number, per table. A book number in use here
# pins the book it names.
_BOOK_REFERENCE_COLUMNS = {
    "characters": ("first_appears_book", "retired_in_book"),
    "world_elements": ("introduced_in_book", "destroyed_in_book"),
    "narrative_arcs": ("starts_in_book", "ends_in_book"),
    "canon_rules": ("applies_from_book", "applies_until_book"),
    "character_relationships": ("started_in_book", "ended_in_book"),
    "timeline_events": ("first_mentioned_book",),
}


def _dump(value) -> str:
    if isinstance(value, (set, frozenset)):
        value = sorted(value)
    return json.dumps(value, ensure_ascii=False)


def _load_json(raw: Optional[str], fallback):
    if not raw:
        return fallback
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Corrupt JSON column value ignored: %.80s", raw)
        return fallback


# ---- Row mappers ----

def _row_to_series(r) -> Series:
    return Series(
        id=r["id"], author_id=r["author_id"], title=r["title"], genre=r["genre"],
        target_book_count=r["target_book_count"], tone=r["tone"], pacing=r["pacing"],
        target_audience=r["target_audience"], premise=r["premise"],
        main_conflict=r["main_conflict"], planned_ending=r["planned_ending"],
        themes=_load_json(r["themes"], []), status=r["status"],
        is_archived=bool(r["is_archived"]),
        created_at=r["created_at"], updated_at=r["updated_at"],
    )


def _row_to_book(r) -> Book:
    return Book(
        id=r["id"], series_id=r["series_id"], book_number=r["book_number"],
        title=r["title"], word_count=r["word_count"], chapter_count=r["chapter_count"],
        status=r["status"], created_at=r["created_at"], updated_at=r["updated_at"],
    )


def _row_to_character(r) -> Character:
    return Character(
        id=r["id"], series_id=r["series_id"], name=r["name"],
        aliases=_load_json(r["aliases"], []), role=r["role"], status=r["status"],
        first_appears_book=r["first_appears_book"], retired_in_book=r["retired_in_book"],
        core_personality=CorePersonality.from_dict(_load_json(r["core_personality"], {})),
        physical_description=r["physical_description"], dialogue_style=r["dialogue_style"],
        canon_lock_level=r["canon_lock_level"],
        locked_attributes=_load_json(r["locked_attributes"], []),
        version=r["version"], created_at=r["created_at"], updated_at=r["updated_at"],
    )


def _row_to_world_element(r) -> WorldElement:
    return WorldElement(
        id=r["id"], series_id=r["series_id"], element_type=r["element_type"],
        name=r["name"], aliases=_load_json(r["aliases"], []),
        short_description=r["short_description"], full_description=r["full_description"],
        visual_description=r["visual_description"], category=r["category"],
        tags=_load_json(r["tags"], []), introduced_in_book=r["introduced_in_book"],
        destroyed_in_book=r["destroyed_in_book"],
        rules=WorldRules.from_dict(_load_json(r["rules"], {})),
        canon_lock_level=r["canon_lock_level"], is_active=bool(r["is_active"]),
        version=r["version"], created_at=r["created_at"], updated_at=r["updated_at"],
    )


def _row_to_arc(r) -> NarrativeArc:
    return NarrativeArc(
        id=r["id"], series_id=r["series_id"], arc_name=r["arc_name"],
        arc_type=r["arc_type"], arc_status=r["arc_status"],
        arc_description=r["arc_description"], starts_in_book=r["starts_in_book"],
        ends_in_book=r["ends_in_book"], themes=_load_json(r["themes"], []),
        setup_points=_load_json(r["setup_points"], []),
        rising_action_points=_load_json(r["rising_action_points"], []),
        climax_point=r["climax_point"],
        falling_action_points=_load_json(r["falling_action_points"], []),
        resolution_point=r["resolution_point"],
        primary_characters=_load_json(r["primary_characters"], []),
        completion_percentage=r["completion_percentage"],
        version=r["version"], created_at=r["created_at"], updated_at=r["updated_at"],
    )


def _row_to_rule(r) -> CanonRule:
    return CanonRule(
        id=r["id"], series_id=r["series_id"], rule_category=r["rule_category"],
        rule_name=r["rule_name"], rule_description=r["rule_description"],
        rule_type=r["rule_type"], lock_level=r["lock_level"],
        applies_from_book=r["applies_from_book"], applies_until_book=r["applies_until_book"],
        violation_message=r["violation_message"],
        valid_examples=_load_json(r["valid_examples"], []),
        invalid_examples=_load_json(r["invalid_examples"], []),
        applies_to_entity_ids=_load_json(r["applies_to_entity_ids"], []),
        is_active=bool(r["is_active"]), version=r["version"],
        created_at=r["created_at"], updated_at=r["updated_at"],
    )


def _row_to_relationship(r) -> CharacterRelationship:
    return CharacterRelationship(
        id=r["id"], series_id=r["series_id"],
        character_a_id=r["character_a_id"], character_b_id=r["character_b_id"],
        type_a_to_b=r["type_a_to_b"], type_b_to_a=r["type_b_to_a"],
        intensity_a_to_b=r["intensity_a_to_b"], intensity_b_to_a=r["intensity_b_to_a"],
        current_dynamic=r["current_dynamic"],
        tension_points=_load_json(r["tension_points"], []),
        shared_history=_load_json(r["shared_history"], []),
        started_in_book=r["started_in_book"], ended_in_book=r["ended_in_book"],
        ending_reason=r["ending_reason"], canon_lock_level=r["canon_lock_level"],
        version=r["version"], created_at=r["created_at"], updated_at=r["updated_at"],
    )


def _row_to_event(r) -> TimelineEvent:
    return TimelineEvent(
        id=r["id"], series_id=r["series_id"], event_name=r["event_name"],
        event_description=r["event_description"], event_type=r["event_type"],
        in_universe_date=r["in_universe_date"], relative_timing=r["relative_timing"],
        sequence_number=r["sequence_number"], first_mentioned_book=r["first_mentioned_book"],
        referenced_in_books=_load_json(r["referenced_in_books"], []),
        involved_characters=_load_json(r["involved_characters"], []),
        involved_locations=_load_json(r["involved_locations"], []),
        consequences=_load_json(r["consequences"], []),
        is_canon=bool(r["is_canon"]), canon_lock_level=r["canon_lock_level"],
        version=r["version"], created_at=r["created_at"], updated_at=r["updated_at"],
    )


def _row_to_violation(r) -> CanonViolation:
    return CanonViolation(
        id=r["id"], series_id=r["series_id"], rule_id=r["rule_id"],
        book_number=r["book_number"], severity=r["severity"],
        description=r["description"], excerpt=r["excerpt"],
        matched_example=r["matched_example"],
        resolution_status=r["resolution_status"], override_reason=r["override_reason"],
        detected_at=r["detected_at"], resolved_at=r["resolved_at"],
    )


class StoreSnapshot:
    """Read access bound to one connection and one read transaction.

    Every query issued through the same snapshot observes the same committed
    state, so a context compiled from several tables never mixes pre- and
    post-edit rows.
    """

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    def _one(self, sql: str, params: tuple):
        return self._conn.execute(sql, params).fetchone()

    def _all(self, sql: str, params: tuple) -> list:
        return self._conn.execute(sql, params).fetchall()

    # ---- Series / Books ----

    def get_series(self, series_id: int) -> Optional[Series]:
        row = self._one("SELECT * FROM series WHERE id = ?", (series_id,))
        return _row_to_series(row) if row else None

    def list_series(self, author_id: Optional[str] = None, include_archived: bool = False) -> list[Series]:
        sql = "SELECT * FROM series WHERE 1=1"
        params: list = []
        if author_id is not None:
            sql += " AND author_id = ?"
            params.append(author_id)
        if not include_archived:
            sql += " AND is_archived = FALSE"
        return [_row_to_series(r) for r in self._all(sql + " ORDER BY id", tuple(params))]

    def get_books(self, series_id: int) -> list[Book]:
        rows = self._all("SELECT * FROM books WHERE series_id = ? ORDER BY id", (series_id,))
        return [_row_to_book(r) for r in rows]

    def get_book(self, book_id: int) -> Optional[Book]:
        row = self._one("SELECT * FROM books WHERE id = ?", (book_id,))
        return _row_to_book(row) if row else None

    # ---- Characters ----

    def get_characters(self, series_id: int) -> list[Character]:
        rows = self._all("SELECT * FROM characters WHERE series_id = ? ORDER BY id", (series_id,))
        return [_row_to_character(r) for r in rows]

    def get_character(self, character_id: int) -> Optional[Character]:
        row = self._one("SELECT * FROM characters WHERE id = ?", (character_id,))
        return _row_to_character(row) if row else None

    # ---- World ----

    def get_world_elements(
        self,
        series_id: int,
        element_type: Optional[WorldElementType] = None,
        active_only: bool = False,
    ) -> list[WorldElement]:
        sql = "SELECT * FROM world_elements WHERE series_id = ?"
        params: list = [series_id]
        if element_type is not None:
            sql += " AND element_type = ?"
            params.append(WorldElementType(element_type).value)
        if active_only:
            sql += " AND is_active = TRUE"
        return [_row_to_world_element(r) for r in self._all(sql + " ORDER BY id", tuple(params))]

    def get_world_element(self, element_id: int) -> Optional[WorldElement]:
        row = self._one("SELECT * FROM world_elements WHERE id = ?", (element_id,))
        return _row_to_world_element(row) if row else None

    # ---- Arcs ----

    def get_arcs(self, series_id: int, statuses: Optional[list[ArcStatus]] = None) -> list[NarrativeArc]:
        rows = self._all("SELECT * FROM narrative_arcs WHERE series_id = ? ORDER BY id", (series_id,))
        arcs = [_row_to_arc(r) for r in rows]
        if statuses:
            wanted = {ArcStatus(s) for s in statuses}
            arcs = [a for a in arcs if a.arc_status in wanted]
        return arcs

    def get_arc(self, arc_id: int) -> Optional[NarrativeArc]:
        row = self._one("SELECT * FROM narrative_arcs WHERE id = ?", (arc_id,))
        return _row_to_arc(row) if row else None

    # ---- Relationships / Timeline ----

    def get_relationships(self, series_id: int) -> list[CharacterRelationship]:
        rows = self._all(
            "SELECT * FROM character_relationships WHERE series_id = ? ORDER BY id", (series_id,)
        )
        return [_row_to_relationship(r) for r in rows]

    def get_relationship(self, relationship_id: int) -> Optional[CharacterRelationship]:
        row = self._one("SELECT * FROM character_relationships WHERE id = ?", (relationship_id,))
        return _row_to_relationship(row) if row else None

    def find_relationship(self, series_id: int, character_a_id: int, character_b_id: int) -> Optional[CharacterRelationship]:
        low, high = sorted((character_a_id, character_b_id))
        row = self._one(
            "SELECT * FROM character_relationships "
            "WHERE series_id = ? AND character_a_id = ? AND character_b_id = ?",
            (series_id, low, high),
        )
        return _row_to_relationship(row) if row else None

    def get_events(self, series_id: int) -> list[TimelineEvent]:
        """Events of a series in in-universe order."""
        rows = self._all(
            "SELECT * FROM timeline_events WHERE series_id = ? ORDER BY sequence_number, id",
            (series_id,),
        )
        return [_row_to_event(r) for r in rows]

    def get_event(self, event_id: int) -> Optional[TimelineEvent]:
        row = self._one("SELECT * FROM timeline_events WHERE id = ?", (event_id,))
        return _row_to_event(row) if row else None

    # ---- Canon ----

    def get_rules(self, series_id: int) -> list[CanonRule]:
        rows = self._all("SELECT * FROM canon_rules WHERE series_id = ? ORDER BY id", (series_id,))
        return [_row_to_rule(r) for r in rows]

    def get_rule(self, rule_id: int) -> Optional[CanonRule]:
        row = self._one("SELECT * FROM canon_rules WHERE id = ?", (rule_id,))
        return _row_to_rule(row) if row else None

    def get_violations(self, series_id: int, pending_only: bool = False) -> list[CanonViolation]:
        sql = "SELECT * FROM canon_violations WHERE series_id = ?"
        if pending_only:
            sql += " AND resolution_status = 'pending'"
        return [_row_to_violation(r) for r in self._all(sql + " ORDER BY id", (series_id,))]

    def get_violation(self, violation_id: int) -> Optional[CanonViolation]:
        row = self._one("SELECT * FROM canon_violations WHERE id = ?", (violation_id,))
        return _row_to_violation(row) if row else None


class Database:
    """SQLite system of record for every series-owned entity.

    Reads go through :meth:`snapshot`; writes to one series are serialized
    by a per-series lock and guarded by optimistic version checks.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._locks: dict[int, threading.RLock] = {}
        self._locks_guard = threading.Lock()
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._get_conn()
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _init_db(self):
        with self._transaction() as conn:
            conn.executescript(_CREATE_TABLES_SQL)
            for sql in _INDEX_SQL:
                conn.execute(sql)

    @contextmanager
    def _series_lock(self, series_id: int):
        with self._locks_guard:
            lock = self._locks.setdefault(series_id, threading.RLock())
        with lock:
            yield

    @contextmanager
    def snapshot(self) -> Iterator[StoreSnapshot]:
        """Open a consistent read view over all stores."""
        conn = self._get_conn()
        try:
            conn.execute("BEGIN")
            yield StoreSnapshot(conn)
        finally:
            conn.rollback()
            conn.close()

    def backup_database(self, target_path: str | Path) -> Path:
        """Create a backup copy of the database.

        Args:
            target_path: Path for the backup file.

        Returns:
            Path to the backup file.
        """
        target = Path(target_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        # Fold the WAL into the main file before copying it
        with self._transaction() as conn:
            conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
        shutil.copy2(str(self.db_path), str(target))
        logger.info("Database backed up to %s", target)
        return target

    @staticmethod
    def _require_series(conn: sqlite3.Connection, series_id: int):
        if conn.execute("SELECT 1 FROM series WHERE id = ?", (series_id,)).fetchone() is None:
            raise SeriesNotFoundError(series_id)

    @staticmethod
    def _check_update(conn: sqlite3.Connection, cursor, table: str, entity: str, entity_id, version: int):
        if cursor.rowcount:
            return
        if conn.execute(f"SELECT 1 FROM {table} WHERE id = ?", (entity_id,)).fetchone() is None:
            raise EntityNotFoundError(entity, entity_id)
        raise ConcurrentModificationError(entity, entity_id, version)

    # ---- Read shortcuts (one snapshot per call) ----

    def get_series(self, series_id: int) -> Optional[Series]:
        with self.snapshot() as snap:
            return snap.get_series(series_id)

    def list_series(self, author_id: Optional[str] = None, include_archived: bool = False) -> list[Series]:
        with self.snapshot() as snap:
            return snap.list_series(author_id, include_archived)

    def get_books(self, series_id: int) -> list[Book]:
        with self.snapshot() as snap:
            return snap.get_books(series_id)

    def get_characters(self, series_id: int) -> list[Character]:
        with self.snapshot() as snap:
            return snap.get_characters(series_id)

    def get_character(self, character_id: int) -> Optional[Character]:
        with self.snapshot() as snap:
            return snap.get_character(character_id)

    def get_world_elements(self, series_id: int, element_type=None, active_only: bool = False) -> list[WorldElement]:
        with self.snapshot() as snap:
            return snap.get_world_elements(series_id, element_type, active_only)

    def get_world_element(self, element_id: int) -> Optional[WorldElement]:
        with self.snapshot() as snap:
            return snap.get_world_element(element_id)

    def get_arcs(self, series_id: int, statuses=None) -> list[NarrativeArc]:
        with self.snapshot() as snap:
            return snap.get_arcs(series_id, statuses)

    def get_arc(self, arc_id: int) -> Optional[NarrativeArc]:
        with self.snapshot() as snap:
            return snap.get_arc(arc_id)

    def get_relationships(self, series_id: int) -> list[CharacterRelationship]:
        with self.snapshot() as snap:
            return snap.get_relationships(series_id)

    def get_relationship(self, relationship_id: int) -> Optional[CharacterRelationship]:
        with self.snapshot() as snap:
            return snap.get_relationship(relationship_id)

    def get_events(self, series_id: int) -> list[TimelineEvent]:
        with self.snapshot() as snap:
            return snap.get_events(series_id)

    def get_event(self, event_id: int) -> Optional[TimelineEvent]:
        with self.snapshot() as snap:
            return snap.get_event(event_id)

    def get_rules(self, series_id: int) -> list[CanonRule]:
        with self.snapshot() as snap:
            return snap.get_rules(series_id)

    def get_rule(self, rule_id: int) -> Optional[CanonRule]:
        with self.snapshot() as snap:
            return snap.get_rule(rule_id)

    def get_violations(self, series_id: int, pending_only: bool = False) -> list[CanonViolation]:
        with self.snapshot() as snap:
            return snap.get_violations(series_id, pending_only)

    # ---- Series ----

    def create_series(self, series: Series) -> Series:
        with self._transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO series (author_id, title, genre, target_book_count, tone, pacing, "
                "target_audience, premise, main_conflict, planned_ending, themes, status, is_archived) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (series.author_id, series.title, series.genre, series.target_book_count,
                 series.tone, series.pacing, series.target_audience, series.premise,
                 series.main_conflict, series.planned_ending, _dump(series.themes),
                 series.status.value, series.is_archived),
            )
            row = conn.execute("SELECT * FROM series WHERE id = ?", (cursor.lastrowid,)).fetchone()
        logger.info("Series %d created: %s", row["id"], series.title)
        return _row_to_series(row)

    def update_series(self, series: Series) -> Series:
        with self._series_lock(series.id), self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE series SET title=?, genre=?, target_book_count=?, tone=?, pacing=?, "
                "target_audience=?, premise=?, main_conflict=?, planned_ending=?, themes=?, "
                "status=?, is_archived=?, updated_at=CURRENT_TIMESTAMP WHERE id=?",
                (series.title, series.genre, series.target_book_count, series.tone,
                 series.pacing, series.target_audience, series.premise, series.main_conflict,
                 series.planned_ending, _dump(series.themes), series.status.value,
                 series.is_archived, series.id),
            )
            if not cursor.rowcount:
                raise SeriesNotFoundError(series.id)
            row = conn.execute("SELECT * FROM series WHERE id = ?", (series.id,)).fetchone()
        return _row_to_series(row)

    # ---- Books ----

    def create_book(self, book: Book) -> Book:
        with self._series_lock(book.series_id), self._transaction() as conn:
            self._require_series(conn, book.series_id)
            try:
                cursor = conn.execute(
                    "INSERT INTO books (series_id, book_number, title, word_count, chapter_count, status) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (book.series_id, book.book_number, book.title, book.word_count,
                     book.chapter_count, book.status.value),
                )
            except sqlite3.IntegrityError:
                raise ValidationError(
                    f"Series {book.series_id} already has a book {book.book_number}",
                    field="book_number",
                ) from None
            row = conn.execute("SELECT * FROM books WHERE id = ?", (cursor.lastrowid,)).fetchone()
        return _row_to_book(row)

    def update_book(self, book: Book) -> Book:
        """Update title, progress and status. The book number is never written here."""
        with self._series_lock(book.series_id), self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE books SET title=?, word_count=?, chapter_count=?, status=?, "
                "updated_at=CURRENT_TIMESTAMP WHERE id=?",
                (book.title, book.word_count, book.chapter_count, book.status.value, book.id),
            )
            if not cursor.rowcount:
                raise EntityNotFoundError("Book", book.id)
            row = conn.execute("SELECT * FROM books WHERE id = ?", (book.id,)).fetchone()
        return _row_to_book(row)

    def _book_number_referenced(self, conn: sqlite3.Connection, series_id: int, book_number: int) -> bool:
        for table, columns in _BOOK_REFERENCE_COLUMNS.items():
            clause = " OR ".join(f"{c} = ?" for c in columns)
            row = conn.execute(
                f"SELECT 1 FROM {table} WHERE series_id = ? AND ({clause}) LIMIT 1",
                (series_id, *([book_number] * len(columns))),
            ).fetchone()
            if row is not None:
                return True
        return False

    def renumber_book(self, book_id: int, new_number: int) -> Book:
        with self.snapshot() as snap:
            book = snap.get_book(book_id)
        if book is None:
            raise EntityNotFoundError("Book", book_id)
        renumbered = replace(book, book_number=new_number)  # re-validates the number
        with self._series_lock(book.series_id), self._transaction() as conn:
            if self._book_number_referenced(conn, book.series_id, book.book_number):
                raise ValidationError(
                    f"Book {book.book_number} is referenced by series entities and cannot be renumbered",
                    field="book_number",
                )
            try:
                conn.execute(
                    "UPDATE books SET book_number=?, updated_at=CURRENT_TIMESTAMP WHERE id=?",
                    (renumbered.book_number, book_id),
                )
            except sqlite3.IntegrityError:
                raise ValidationError(
                    f"Series {book.series_id} already has a book {new_number}", field="book_number"
                ) from None
            row = conn.execute("SELECT * FROM books WHERE id = ?", (book_id,)).fetchone()
        return _row_to_book(row)

    # ---- Characters ----

    def _character_params(self, c: Character) -> tuple:
        return (c.name, _dump(c.aliases), c.role.value, c.status.value, c.first_appears_book,
                c.retired_in_book, _dump(c.core_personality.to_dict()), c.physical_description,
                c.dialogue_style, c.canon_lock_level.value, _dump(c.locked_attributes))

    def create_character(self, character: Character) -> Character:
        with self._series_lock(character.series_id), self._transaction() as conn:
            self._require_series(conn, character.series_id)
            cursor = conn.execute(
                "INSERT INTO characters (name, aliases, role, status, first_appears_book, "
                "retired_in_book, core_personality, physical_description, dialogue_style, "
                "canon_lock_level, locked_attributes, series_id) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (*self._character_params(character), character.series_id),
            )
            row = conn.execute("SELECT * FROM characters WHERE id = ?", (cursor.lastrowid,)).fetchone()
        return _row_to_character(row)

    def update_character(self, character: Character) -> Character:
        with self._series_lock(character.series_id), self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE characters SET name=?, aliases=?, role=?, status=?, first_appears_book=?, "
                "retired_in_book=?, core_personality=?, physical_description=?, dialogue_style=?, "
                "canon_lock_level=?, locked_attributes=?, version=version+1, "
                "updated_at=CURRENT_TIMESTAMP WHERE id=? AND version=?",
                (*self._character_params(character), character.id, character.version),
            )
            self._check_update(conn, cursor, "characters", "Character", character.id, character.version)
            row = conn.execute("SELECT * FROM characters WHERE id = ?", (character.id,)).fetchone()
        return _row_to_character(row)

    # ---- World Elements ----

    def _element_params(self, e: WorldElement) -> tuple:
        return (e.element_type.value, e.name, _dump(e.aliases), e.short_description,
                e.full_description, e.visual_description, e.category, _dump(e.tags),
                e.introduced_in_book, e.destroyed_in_book, _dump(e.rules.to_dict()),
                e.canon_lock_level.value, e.is_active)

    def create_world_element(self, element: WorldElement) -> WorldElement:
        with self._series_lock(element.series_id), self._transaction() as conn:
            self._require_series(conn, element.series_id)
            cursor = conn.execute(
                "INSERT INTO world_elements (element_type, name, aliases, short_description, "
                "full_description, visual_description, category, tags, introduced_in_book, "
                "destroyed_in_book, rules, canon_lock_level, is_active, series_id) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (*self._element_params(element), element.series_id),
            )
            row = conn.execute("SELECT * FROM world_elements WHERE id = ?", (cursor.lastrowid,)).fetchone()
        return _row_to_world_element(row)

    def update_world_element(self, element: WorldElement) -> WorldElement:
        with self._series_lock(element.series_id), self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE world_elements SET element_type=?, name=?, aliases=?, short_description=?, "
                "full_description=?, visual_description=?, category=?, tags=?, "
                "introduced_in_book=?, destroyed_in_book=?, rules=?, canon_lock_level=?, "
                "is_active=?, version=version+1, updated_at=CURRENT_TIMESTAMP "
                "WHERE id=? AND version=?",
                (*self._element_params(element), element.id, element.version),
            )
            self._check_update(conn, cursor, "world_elements", "WorldElement", element.id, element.version)
            row = conn.execute("SELECT * FROM world_elements WHERE id = ?", (element.id,)).fetchone()
        return _row_to_world_element(row)

    # ---- Narrative Arcs ----

    def _arc_params(self, a: NarrativeArc) -> tuple:
        return (a.arc_name, a.arc_type.value, a.arc_status.value, a.arc_description,
                a.starts_in_book, a.ends_in_book, _dump(a.themes), _dump(a.setup_points),
                _dump(a.rising_action_points), a.climax_point, _dump(a.falling_action_points),
                a.resolution_point, _dump(a.primary_characters), a.completion_percentage)

    def create_arc(self, arc: NarrativeArc) -> NarrativeArc:
        with self._series_lock(arc.series_id), self._transaction() as conn:
            self._require_series(conn, arc.series_id)
            cursor = conn.execute(
                "INSERT INTO narrative_arcs (arc_name, arc_type, arc_status, arc_description, "
                "starts_in_book, ends_in_book, themes, setup_points, rising_action_points, "
                "climax_point, falling_action_points, resolution_point, primary_characters, "
                "completion_percentage, series_id) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (*self._arc_params(arc), arc.series_id),
            )
            row = conn.execute("SELECT * FROM narrative_arcs WHERE id = ?", (cursor.lastrowid,)).fetchone()
        return _row_to_arc(row)

    def update_arc(self, arc: NarrativeArc) -> NarrativeArc:
        with self._series_lock(arc.series_id), self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE narrative_arcs SET arc_name=?, arc_type=?, arc_status=?, arc_description=?, "
                "starts_in_book=?, ends_in_book=?, themes=?, setup_points=?, rising_action_points=?, "
                "climax_point=?, falling_action_points=?, resolution_point=?, primary_characters=?, "
                "completion_percentage=?, version=version+1, updated_at=CURRENT_TIMESTAMP "
                "WHERE id=? AND version=?",
                (*self._arc_params(arc), arc.id, arc.version),
            )
            self._check_update(conn, cursor, "narrative_arcs", "NarrativeArc", arc.id, arc.version)
            row = conn.execute("SELECT * FROM narrative_arcs WHERE id = ?", (arc.id,)).fetchone()
        return _row_to_arc(row)

    # ---- Canon Rules ----

    def _rule_params(self, r: CanonRule) -> tuple:
        return (r.rule_category.value, r.rule_name, r.rule_description, r.rule_type.value,
                r.lock_level.value, r.applies_from_book, r.applies_until_book,
                r.violation_message, _dump(r.valid_examples), _dump(r.invalid_examples),
                _dump(r.applies_to_entity_ids), r.is_active)

    def create_rule(self, rule: CanonRule) -> CanonRule:
        with self._series_lock(rule.series_id), self._transaction() as conn:
            self._require_series(conn, rule.series_id)
            cursor = conn.execute(
                "INSERT INTO canon_rules (rule_category, rule_name, rule_description, rule_type, "
                "lock_level, applies_from_book, applies_until_book, violation_message, "
                "valid_examples, invalid_examples, applies_to_entity_ids, is_active, series_id) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (*self._rule_params(rule), rule.series_id),
            )
            row = conn.execute("SELECT * FROM canon_rules WHERE id = ?", (cursor.lastrowid,)).fetchone()
        return _row_to_rule(row)

    def update_rule(self, rule: CanonRule) -> CanonRule:
        with self._series_lock(rule.series_id), self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE canon_rules SET rule_category=?, rule_name=?, rule_description=?, "
                "rule_type=?, lock_level=?, applies_from_book=?, applies_until_book=?, "
                "violation_message=?, valid_examples=?, invalid_examples=?, "
                "applies_to_entity_ids=?, is_active=?, version=version+1, "
                "updated_at=CURRENT_TIMESTAMP WHERE id=? AND version=?",
                (*self._rule_params(rule), rule.id, rule.version),
            )
            self._check_update(conn, cursor, "canon_rules", "CanonRule", rule.id, rule.version)
            row = conn.execute("SELECT * FROM canon_rules WHERE id = ?", (rule.id,)).fetchone()
        return _row_to_rule(row)

    # ---- Character Relationships ----

    @staticmethod
    def _require_characters(conn: sqlite3.Connection, series_id: int, character_ids):
        for character_id in character_ids:
            row = conn.execute(
                "SELECT 1 FROM characters WHERE id = ? AND series_id = ?", (character_id, series_id)
            ).fetchone()
            if row is None:
                raise EntityNotFoundError("Character", character_id)

    def _relationship_params(self, r: CharacterRelationship) -> tuple:
        return (r.type_a_to_b.value, r.type_b_to_a.value, r.intensity_a_to_b, r.intensity_b_to_a,
                r.current_dynamic, _dump(r.tension_points), _dump(r.shared_history),
                r.started_in_book, r.ended_in_book, r.ending_reason, r.canon_lock_level.value)

    def create_relationship(self, relationship: CharacterRelationship) -> CharacterRelationship:
        r = relationship
        with self._series_lock(r.series_id), self._transaction() as conn:
            self._require_series(conn, r.series_id)
            self._require_characters(conn, r.series_id, (r.character_a_id, r.character_b_id))
            try:
                cursor = conn.execute(
                    "INSERT INTO character_relationships (type_a_to_b, type_b_to_a, "
                    "intensity_a_to_b, intensity_b_to_a, current_dynamic, tension_points, "
                    "shared_history, started_in_book, ended_in_book, ending_reason, "
                    "canon_lock_level, series_id, character_a_id, character_b_id) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (*self._relationship_params(r), r.series_id, r.character_a_id, r.character_b_id),
                )
            except sqlite3.IntegrityError:
                raise ValidationError(
                    f"Characters {r.character_a_id} and {r.character_b_id} already have a relationship",
                    field="character_b_id",
                ) from None
            row = conn.execute(
                "SELECT * FROM character_relationships WHERE id = ?", (cursor.lastrowid,)
            ).fetchone()
        return _row_to_relationship(row)

    def update_relationship(self, relationship: CharacterRelationship) -> CharacterRelationship:
        """Rewrite the details of a pair. The pair itself is never changed here."""
        r = relationship
        with self._series_lock(r.series_id), self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE character_relationships SET type_a_to_b=?, type_b_to_a=?, "
                "intensity_a_to_b=?, intensity_b_to_a=?, current_dynamic=?, tension_points=?, "
                "shared_history=?, started_in_book=?, ended_in_book=?, ending_reason=?, "
                "canon_lock_level=?, version=version+1, updated_at=CURRENT_TIMESTAMP "
                "WHERE id=? AND version=?",
                (*self._relationship_params(r), r.id, r.version),
            )
            self._check_update(conn, cursor, "character_relationships", "CharacterRelationship",
                               r.id, r.version)
            row = conn.execute("SELECT * FROM character_relationships WHERE id = ?", (r.id,)).fetchone()
        return _row_to_relationship(row)

    # ---- Timeline Events ----

    def _event_params(self, e: TimelineEvent) -> tuple:
        return (e.event_name, e.event_description, e.event_type.value, e.in_universe_date,
                e.relative_timing, e.sequence_number, e.first_mentioned_book,
                _dump(e.referenced_in_books), _dump(e.involved_characters),
                _dump(e.involved_locations), _dump(e.consequences), e.is_canon,
                e.canon_lock_level.value)

    def create_event(self, event: TimelineEvent) -> TimelineEvent:
        with self._series_lock(event.series_id), self._transaction() as conn:
            self._require_series(conn, event.series_id)
            self._require_characters(conn, event.series_id, event.involved_characters)
            cursor = conn.execute(
                "INSERT INTO timeline_events (event_name, event_description, event_type, "
                "in_universe_date, relative_timing, sequence_number, first_mentioned_book, "
                "referenced_in_books, involved_characters, involved_locations, consequences, "
                "is_canon, canon_lock_level, series_id) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (*self._event_params(event), event.series_id),
            )
            row = conn.execute("SELECT * FROM timeline_events WHERE id = ?", (cursor.lastrowid,)).fetchone()
        return _row_to_event(row)

    def update_event(self, event: TimelineEvent) -> TimelineEvent:
        with self._series_lock(event.series_id), self._transaction() as conn:
            self._require_characters(conn, event.series_id, event.involved_characters)
            cursor = conn.execute(
                "UPDATE timeline_events SET event_name=?, event_description=?, event_type=?, "
                "in_universe_date=?, relative_timing=?, sequence_number=?, first_mentioned_book=?, "
                "referenced_in_books=?, involved_characters=?, involved_locations=?, "
                "consequences=?, is_canon=?, canon_lock_level=?, version=version+1, "
                "updated_at=CURRENT_TIMESTAMP WHERE id=? AND version=?",
                (*self._event_params(event), event.id, event.version),
            )
            self._check_update(conn, cursor, "timeline_events", "TimelineEvent", event.id, event.version)
            row = conn.execute("SELECT * FROM timeline_events WHERE id = ?", (event.id,)).fetchone()
        return _row_to_event(row)

    # ---- Canon Violations ----

    def record_violations(
        self, series_id: int, book_number: int, violations: list[Violation]
    ) -> list[CanonViolation]:
        if not violations:
            return []
        with self._series_lock(series_id), self._transaction() as conn:
            self._require_series(conn, series_id)
            ids = []
            for v in violations:
                cursor = conn.execute(
                    "INSERT INTO canon_violations (series_id, rule_id, book_number, severity, "
                    "description, excerpt, matched_example) VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (series_id, v.rule.id, book_number, v.severity.value, v.description,
                     v.excerpt, v.matched_example),
                )
                ids.append(cursor.lastrowid)
            rows = [
                conn.execute("SELECT * FROM canon_violations WHERE id = ?", (i,)).fetchone()
                for i in ids
            ]
        logger.info("Recorded %d canon violation(s) for series %d book %d",
                    len(ids), series_id, book_number)
        return [_row_to_violation(r) for r in rows]

    def resolve_violation(
        self, violation_id: int, status: ResolutionStatus, reason: Optional[str] = None
    ) -> CanonViolation:
        status = ResolutionStatus(status)
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE canon_violations SET resolution_status=?, override_reason=?, "
                "resolved_at=CURRENT_TIMESTAMP WHERE id=?",
                (status.value, reason, violation_id),
            )
            if not cursor.rowcount:
                raise EntityNotFoundError("CanonViolation", violation_id)
            row = conn.execute("SELECT * FROM canon_violations WHERE id = ?", (violation_id,)).fetchone()
        return _row_to_violation(row)
