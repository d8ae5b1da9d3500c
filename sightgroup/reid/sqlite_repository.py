"""
SQLite repository for persistent person group storage.
"""

import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from loguru import logger

from ..reid_types import (
    GroupID,
    GroupNotFoundError,
    PersonDescription,
    PersonGroup,
    Sighting,
)
from .clarity import compute_clarity
from .group_repository import BaseGroupRepository, collect_groups_with_representatives, next_identifier


class SQLiteGroupRepository(BaseGroupRepository):
    """
    SQLite-backed group repository.

    Only sightings are stored; each group's canonical description and member
    count are derived from its sighting rows on read, so concurrent attaches
    cannot leave a group with two canonicals.
    """

    def __init__(self, config: dict):
        """
        Initialize SQLite group repository.

        Args:
            config: Dictionary containing:
                - database.db_path: Path to SQLite database file
        """
        self.config = config
        self.db_path = config.get("database", {}).get("db_path", "data/sightings.db")
        self.conn = None
        self.initialize(config)

    def initialize(self, config: dict) -> None:
        """Open the database and create tables."""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        # Autocommit mode; write paths open their own BEGIN IMMEDIATE transaction.
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._create_tables()

    def _create_tables(self) -> None:
        cursor = self.conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS person_groups (
                group_id INTEGER PRIMARY KEY AUTOINCREMENT,
                identifier TEXT NOT NULL UNIQUE,
                created_at TIMESTAMP NOT NULL
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS sightings (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                group_id INTEGER NOT NULL,
                description_json TEXT NOT NULL,
                image_ref TEXT,
                clarity INTEGER NOT NULL,
                captured_at TIMESTAMP NOT NULL,
                explanation TEXT,
                FOREIGN KEY (group_id) REFERENCES person_groups (group_id)
            )
        """)
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_sightings_group_id ON sightings (group_id)")

        # Databases created before explanations were stored lack the column.
        columns = {row["name"] for row in cursor.execute("PRAGMA table_info(sightings)")}
        if "explanation" not in columns:
            logger.info("Adding explanation column to sightings table")
            cursor.execute("ALTER TABLE sightings ADD COLUMN explanation TEXT")

    def _insert_sighting(
        self,
        cursor,
        group_id: GroupID,
        description: PersonDescription,
        image_ref: Optional[str],
        explanation: Optional[str]
    ) -> None:
        cursor.execute("""
            INSERT INTO sightings (group_id, description_json, image_ref, clarity, captured_at, explanation)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (
            group_id,
            description.model_dump_json(),
            image_ref,
            compute_clarity(description),
            datetime.now().isoformat(),
            explanation,
        ))

    def _row_to_sighting(self, row) -> Sighting:
        return Sighting(
            sighting_id=row["id"],
            group_id=row["group_id"],
            description=PersonDescription.model_validate_json(row["description_json"]),
            image_ref=row["image_ref"],
            captured_at=datetime.fromisoformat(row["captured_at"]),
            explanation=row["explanation"],
        )

    def _identifiers(self) -> dict:
        cursor = self.conn.execute("SELECT group_id, identifier FROM person_groups")
        return {row["group_id"]: row["identifier"] for row in cursor.fetchall()}

    def _load_group(self, group_id: GroupID) -> Optional[PersonGroup]:
        row = self.conn.execute(
            "SELECT identifier FROM person_groups WHERE group_id = ?", (group_id,)
        ).fetchone()
        if row is None:
            return None
        sightings = self._fetch_sightings(group_id)
        groups = collect_groups_with_representatives(sightings, {group_id: row["identifier"]})
        return groups[0] if groups else None

    def _fetch_sightings(self, group_id: Optional[GroupID] = None) -> List[Sighting]:
        if group_id is None:
            cursor = self.conn.execute("SELECT * FROM sightings ORDER BY id")
        else:
            cursor = self.conn.execute("SELECT * FROM sightings WHERE group_id = ? ORDER BY id", (group_id,))
        return [self._row_to_sighting(row) for row in cursor.fetchall()]

    def list_groups(self) -> List[PersonGroup]:
        with self._lock:
            return collect_groups_with_representatives(self._fetch_sightings(), self._identifiers())

    def get_group(self, group_id: GroupID) -> Optional[PersonGroup]:
        with self._lock:
            return self._load_group(group_id)

    def list_sightings(self, group_id: Optional[GroupID] = None) -> List[Sighting]:
        with self._lock:
            return self._fetch_sightings(group_id)

    def create_group(
        self,
        description: PersonDescription,
        image_ref: Optional[str] = None,
        explanation: Optional[str] = None
    ) -> PersonGroup:
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute("BEGIN IMMEDIATE")
            try:
                existing = [row["identifier"] for row in cursor.execute("SELECT identifier FROM person_groups")]
                identifier = next_identifier(existing)
                cursor.execute(
                    "INSERT INTO person_groups (identifier, created_at) VALUES (?, ?)",
                    (identifier, datetime.now().isoformat()),
                )
                group_id = cursor.lastrowid
                self._insert_sighting(cursor, group_id, description, image_ref, explanation)
                cursor.execute("COMMIT")
            except sqlite3.Error:
                cursor.execute("ROLLBACK")
                raise
            logger.info(f"Created group {group_id} ({identifier})")
            return self._load_group(group_id)

    def attach(
        self,
        group_id: GroupID,
        description: PersonDescription,
        image_ref: Optional[str] = None,
        explanation: Optional[str] = None
    ) -> PersonGroup:
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute("BEGIN IMMEDIATE")
            try:
                row = cursor.execute("SELECT group_id FROM person_groups WHERE group_id = ?", (group_id,)).fetchone()
                if row is None:
                    raise GroupNotFoundError(f"Group {group_id} not found")
                self._insert_sighting(cursor, group_id, description, image_ref, explanation)
                cursor.execute("COMMIT")
            except (sqlite3.Error, GroupNotFoundError):
                cursor.execute("ROLLBACK")
                raise
            return self._load_group(group_id)

    def close(self) -> None:
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
