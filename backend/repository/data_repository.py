"""Repository layer responsible for all database access."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

from backend.domain.models import (
    Reservation,
    ReservationCandidate,
    Resource,
    ResourceConfig,
    TimeInterval,
)
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

OVERLAP_GUARD_MESSAGE = "reservation overlaps an existing reservation"


@dataclass(frozen=True)
class DemoResource:
    resource_number: str
    name: str
    building: str
    parent_number: Optional[str] = None
    department: Optional[str] = None
    capacity: Optional[int] = None
    availability_window: Optional[str] = None


DEMO_RESOURCES: tuple[DemoResource, ...] = (
    DemoResource("A", "Building A", "A"),
    DemoResource("A-01", "Floor 1", "A", "A"),
    DemoResource("A-01-Lobby", "Lobby Level 1", "A", "A-01"),
    DemoResource("A-01-Corridor", "Corridor Floor 1", "A", "A-01"),
    DemoResource(
        "A-01-01", "Meeting Room 1", "A", "A-01", "EFM", 10, "Mon to Fri (9AM to 6PM)"
    ),
    DemoResource(
        "A-01-02", "Meeting Room 2", "A", "A-01", "FSS", 50, "Mon to Fri (9AM to 6PM)"
    ),
    DemoResource("A-01-01-M1", "Sub-room M1", "A", "A-01-01"),
    DemoResource("A-01-01-M2", "Sub-room M2", "A", "A-01-01"),
    DemoResource("A-CarPark", "Car Park", "A", "A"),
    DemoResource("B", "Building B", "B"),
    DemoResource("B-05", "Floor 5", "B", "B"),
    DemoResource("B-05-Corridor", "Corridor Floor 5", "B", "B-05"),
    DemoResource("B-05-15", "Pantry Floor 5", "B", "B-05"),
    DemoResource("B-05-11", "Utility Room", "B", "B-05", "ASS", 30, "Always open"),
    DemoResource(
        "B-05-12", "Sanitary Room", "B", "B-05", "EFM", 10, "Mon to Fri (9AM to 6PM)"
    ),
    DemoResource(
        "B-05-13", "Meeting Toilet", "B", "B-05", "EFM", 10, "Mon to Fri (9AM to 6PM)"
    ),
    DemoResource(
        "B-05-14", "Genset Room", "B", "B-05", "ASS", 100, "Mon to Sun (9AM to 6PM)"
    ),
)


def to_db_timestamp(value: datetime) -> str:
    """Fixed-width UTC text so that SQL string comparison orders instants."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    # isoformat pads the year to four digits; strftime("%Y") does not.
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_serialization_failure(exc: sqlite3.Error) -> bool:
    """True for lock contention errors (SQLITE_BUSY / SQLITE_LOCKED)."""
    error_code = getattr(exc, "sqlite_errorcode", None)
    if error_code is None:
        return False
    return error_code & 0xFF in (sqlite3.SQLITE_BUSY, sqlite3.SQLITE_LOCKED)


def is_overlap_guard_violation(exc: sqlite3.Error) -> bool:
    return isinstance(exc, sqlite3.IntegrityError) and OVERLAP_GUARD_MESSAGE in str(exc)


_RESERVATION_COLUMNS = """
    b.id,
    b.resource_id,
    r.resource_number,
    b.department,
    b.attendee_count,
    b.start_at,
    b.end_at,
    b.created_at
"""

_RESOURCE_COLUMNS = """
    id, resource_number, name, building, parent_id, created_at, updated_at
"""


class DataRepository:
    """Encapsulates SQLite access so business logic stays storage-agnostic."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self, isolation_level: Optional[str] = "") -> sqlite3.Connection:
        connection = sqlite3.connect(
            self._db_path,
            timeout=self._settings.database_busy_timeout_seconds,
            isolation_level=isolation_level,
        )
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute("PRAGMA journal_mode = WAL;")

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Resources (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        resource_number TEXT NOT NULL UNIQUE,
                        name TEXT NOT NULL,
                        building TEXT NOT NULL,
                        parent_id INTEGER,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        FOREIGN KEY (parent_id) REFERENCES Resources(id) ON DELETE CASCADE
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS ResourceScopes (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        resource_id INTEGER NOT NULL,
                        department TEXT NOT NULL,
                        capacity INTEGER NOT NULL CHECK (capacity > 0),
                        availability_window TEXT,
                        UNIQUE (resource_id, department),
                        FOREIGN KEY (resource_id) REFERENCES Resources(id) ON DELETE CASCADE
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Reservations (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        resource_id INTEGER NOT NULL,
                        department TEXT NOT NULL,
                        attendee_count INTEGER NOT NULL CHECK (attendee_count > 0),
                        start_at TEXT NOT NULL,
                        end_at TEXT NOT NULL,
                        created_at TEXT NOT NULL,
                        CHECK (start_at < end_at),
                        FOREIGN KEY (resource_id) REFERENCES Resources(id) ON DELETE CASCADE
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_resources_parent
                    ON Resources(parent_id);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_reservations_resource_interval
                    ON Reservations(resource_id, start_at, end_at);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_reservations_created
                    ON Reservations(created_at);
                    """
                )

                # Last line of defence if a writer ever skips the overlap check.
                cursor.execute(
                    f"""
                    CREATE TRIGGER IF NOT EXISTS trg_reservations_no_overlap
                    BEFORE INSERT ON Reservations
                    WHEN EXISTS (
                        SELECT 1 FROM Reservations
                        WHERE resource_id = NEW.resource_id
                          AND start_at < NEW.end_at
                          AND end_at > NEW.start_at
                    )
                    BEGIN
                        SELECT RAISE(ABORT, '{OVERLAP_GUARD_MESSAGE}');
                    END;
                    """
                )
                conn.commit()
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    def seed_demo_resources_if_empty(self) -> int:
        """Insert the sample building hierarchy only when no resources exist."""
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT COUNT(*) AS count FROM Resources;")
                if int(cursor.fetchone()["count"]) > 0:
                    logger.info("Resources already present; skipping demo seed")
                    return 0

                now = to_db_timestamp(utc_now())
                ids_by_number: dict[str, int] = {}
                for item in DEMO_RESOURCES:
                    parent_id = (
                        ids_by_number[item.parent_number]
                        if item.parent_number is not None
                        else None
                    )
                    cursor.execute(
                        """
                        INSERT INTO Resources (
                            resource_number, name, building, parent_id, created_at, updated_at
                        )
                        VALUES (?, ?, ?, ?, ?, ?);
                        """,
                        (item.resource_number, item.name, item.building, parent_id, now, now),
                    )
                    ids_by_number[item.resource_number] = int(cursor.lastrowid)
                    if item.department is not None and item.capacity is not None:
                        cursor.execute(
                            """
                            INSERT INTO ResourceScopes (
                                resource_id, department, capacity, availability_window
                            )
                            VALUES (?, ?, ?, ?);
                            """,
                            (
                                ids_by_number[item.resource_number],
                                item.department,
                                item.capacity,
                                item.availability_window,
                            ),
                        )
                conn.commit()
            logger.info("Demo seed completed with %s resources", len(DEMO_RESOURCES))
            return len(DEMO_RESOURCES)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Demo resource seeding failed: {exc}") from exc

    def ping(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1;").fetchone()

    # --- Resource directory ---

    @staticmethod
    def _row_to_resource(row: sqlite3.Row) -> Resource:
        return Resource(
            resource_id=int(row["id"]),
            resource_number=str(row["resource_number"]),
            name=str(row["name"]),
            building=str(row["building"]),
            parent_id=int(row["parent_id"]) if row["parent_id"] is not None else None,
            created_at=from_db_timestamp(row["created_at"]),
            updated_at=from_db_timestamp(row["updated_at"]),
        )

    @staticmethod
    def _row_to_config(row: sqlite3.Row) -> ResourceConfig:
        return ResourceConfig(
            resource_id=int(row["resource_id"]),
            resource_number=str(row["resource_number"]),
            department=str(row["department"]),
            capacity=int(row["capacity"]),
            availability_window=(
                str(row["availability_window"])
                if row["availability_window"] is not None
                else None
            ),
        )

    def get_resource(self, resource_number: str) -> Optional[Resource]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT {_RESOURCE_COLUMNS} FROM Resources WHERE resource_number = ?;",
                (resource_number,),
            )
            row = cursor.fetchone()
            if row is None:
                return None
            return self._row_to_resource(row)

    def get_resource_by_id(self, resource_id: int) -> Optional[Resource]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT {_RESOURCE_COLUMNS} FROM Resources WHERE id = ?;",
                (resource_id,),
            )
            row = cursor.fetchone()
            if row is None:
                return None
            return self._row_to_resource(row)

    def resource_exists(self, resource_number: str) -> bool:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT 1 FROM Resources WHERE resource_number = ?;",
                (resource_number,),
            )
            return cursor.fetchone() is not None

    def create_resource(
        self,
        resource_number: str,
        name: str,
        building: str,
        parent_id: Optional[int] = None,
    ) -> Resource:
        now = to_db_timestamp(utc_now())
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO Resources (
                    resource_number, name, building, parent_id, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?);
                """,
                (resource_number, name, building, parent_id, now, now),
            )
            conn.commit()
            resource_id = int(cursor.lastrowid)
        resource = self.get_resource_by_id(resource_id)
        if resource is None:
            raise RuntimeError(f"Resource {resource_id} vanished after insert")
        return resource

    def update_resource(
        self,
        resource_number: str,
        name: str,
        building: str,
    ) -> Optional[Resource]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                UPDATE Resources
                SET name = ?, building = ?, updated_at = ?
                WHERE resource_number = ?;
                """,
                (name, building, to_db_timestamp(utc_now()), resource_number),
            )
            conn.commit()
            if cursor.rowcount == 0:
                return None
        return self.get_resource(resource_number)

    def delete_resource(self, resource_number: str) -> bool:
        """Delete a node; descendants, scopes and reservations cascade."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "DELETE FROM Resources WHERE resource_number = ?;",
                (resource_number,),
            )
            conn.commit()
            return cursor.rowcount > 0

    def list_resources(self, root_number: Optional[str] = None) -> List[Resource]:
        """Return the whole forest, or one node plus all of its descendants."""
        with self._connect() as conn:
            cursor = conn.cursor()
            if root_number is None:
                cursor.execute(
                    f"SELECT {_RESOURCE_COLUMNS} FROM Resources ORDER BY id ASC;"
                )
            else:
                cursor.execute(
                    f"""
                    WITH RECURSIVE subtree(node_id) AS (
                        SELECT id FROM Resources WHERE resource_number = ?
                        UNION ALL
                        SELECT child.id
                        FROM Resources AS child
                        INNER JOIN subtree ON child.parent_id = subtree.node_id
                    )
                    SELECT {_RESOURCE_COLUMNS}
                    FROM Resources
                    WHERE id IN (SELECT node_id FROM subtree)
                    ORDER BY id ASC;
                    """,
                    (root_number,),
                )
            return [self._row_to_resource(row) for row in cursor.fetchall()]

    def list_scopes(self, resource_ids: Sequence[int]) -> List[ResourceConfig]:
        if not resource_ids:
            return []
        placeholders = ",".join("?" for _ in resource_ids)
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT
                    s.resource_id,
                    r.resource_number,
                    s.department,
                    s.capacity,
                    s.availability_window
                FROM ResourceScopes AS s
                INNER JOIN Resources AS r ON r.id = s.resource_id
                WHERE s.resource_id IN ({placeholders})
                ORDER BY s.resource_id ASC, s.department ASC;
                """,
                tuple(resource_ids),
            )
            return [self._row_to_config(row) for row in cursor.fetchall()]

    def resolve_config(
        self,
        resource_number: str,
        department: str,
    ) -> Optional[ResourceConfig]:
        """Return the scope that lets ``department`` book ``resource_number``."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT
                    s.resource_id,
                    r.resource_number,
                    s.department,
                    s.capacity,
                    s.availability_window
                FROM ResourceScopes AS s
                INNER JOIN Resources AS r ON r.id = s.resource_id
                WHERE r.resource_number = ? AND s.department = ?;
                """,
                (resource_number, department),
            )
            row = cursor.fetchone()
            if row is None:
                return None
            return self._row_to_config(row)

    def create_scope(self, config: ResourceConfig) -> ResourceConfig:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO ResourceScopes (
                    resource_id, department, capacity, availability_window
                )
                VALUES (?, ?, ?, ?);
                """,
                (
                    config.resource_id,
                    config.department,
                    config.capacity,
                    config.availability_window,
                ),
            )
            conn.commit()
        return config

    def save_scope(self, config: ResourceConfig) -> bool:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                UPDATE ResourceScopes
                SET capacity = ?, availability_window = ?
                WHERE resource_id = ? AND department = ?;
                """,
                (
                    config.capacity,
                    config.availability_window,
                    config.resource_id,
                    config.department,
                ),
            )
            conn.commit()
            return cursor.rowcount > 0

    def delete_scope(self, resource_id: int, department: str) -> bool:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "DELETE FROM ResourceScopes WHERE resource_id = ? AND department = ?;",
                (resource_id, department),
            )
            conn.commit()
            return cursor.rowcount > 0

    # --- Reservations ---

    @contextmanager
    def serializable_transaction(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection holding the database write lock.

        ``BEGIN IMMEDIATE`` takes the write lock before the first read, so a
        read-then-insert inside the block is serialized against every other
        writer. Waiting for the lock is bounded by the busy timeout; past it
        SQLite raises ``SQLITE_BUSY``. Any exception, cancellation included,
        rolls the transaction back.
        """
        conn = self._connect(isolation_level=None)
        try:
            conn.execute("BEGIN IMMEDIATE;")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK;")
                raise
            conn.execute("COMMIT;")
        finally:
            conn.close()

    @staticmethod
    def find_overlapping_reservation(
        conn: sqlite3.Connection,
        resource_id: int,
        start_at: datetime,
        end_at: datetime,
    ) -> Optional[TimeInterval]:
        cursor = conn.execute(
            """
            SELECT start_at, end_at
            FROM Reservations
            WHERE resource_id = ?
              AND start_at < ?
              AND end_at > ?
            ORDER BY start_at ASC
            LIMIT 1;
            """,
            (resource_id, to_db_timestamp(end_at), to_db_timestamp(start_at)),
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return TimeInterval(
            start_at=from_db_timestamp(row["start_at"]),
            end_at=from_db_timestamp(row["end_at"]),
        )

    @staticmethod
    def insert_reservation(
        conn: sqlite3.Connection,
        candidate: ReservationCandidate,
    ) -> Reservation:
        created_at = utc_now()
        cursor = conn.execute(
            """
            INSERT INTO Reservations (
                resource_id, department, attendee_count, start_at, end_at, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?);
            """,
            (
                candidate.resource_id,
                candidate.department,
                candidate.attendee_count,
                to_db_timestamp(candidate.start_at),
                to_db_timestamp(candidate.end_at),
                to_db_timestamp(created_at),
            ),
        )
        return Reservation(
            reservation_id=int(cursor.lastrowid),
            resource_id=candidate.resource_id,
            resource_number=candidate.resource_number,
            department=candidate.department,
            attendee_count=candidate.attendee_count,
            start_at=from_db_timestamp(to_db_timestamp(candidate.start_at)),
            end_at=from_db_timestamp(to_db_timestamp(candidate.end_at)),
            created_at=from_db_timestamp(to_db_timestamp(created_at)),
        )

    @staticmethod
    def _row_to_reservation(row: sqlite3.Row) -> Reservation:
        return Reservation(
            reservation_id=int(row["id"]),
            resource_id=int(row["resource_id"]),
            resource_number=str(row["resource_number"]),
            department=str(row["department"]),
            attendee_count=int(row["attendee_count"]),
            start_at=from_db_timestamp(row["start_at"]),
            end_at=from_db_timestamp(row["end_at"]),
            created_at=from_db_timestamp(row["created_at"]),
        )

    def get_reservation(self, reservation_id: int) -> Optional[Reservation]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT {_RESERVATION_COLUMNS}
                FROM Reservations AS b
                INNER JOIN Resources AS r ON r.id = b.resource_id
                WHERE b.id = ?;
                """,
                (reservation_id,),
            )
            row = cursor.fetchone()
            if row is None:
                return None
            return self._row_to_reservation(row)

    def delete_reservation(self, reservation_id: int) -> bool:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM Reservations WHERE id = ?;", (reservation_id,))
            conn.commit()
            return cursor.rowcount > 0

    def list_reservations(
        self,
        resource_number: Optional[str],
        limit: int,
        offset: int,
    ) -> List[Reservation]:
        """Newest first; ties on created_at fall back to insertion order."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT {_RESERVATION_COLUMNS}
                FROM Reservations AS b
                INNER JOIN Resources AS r ON r.id = b.resource_id
                WHERE (? IS NULL OR r.resource_number = ?)
                ORDER BY b.created_at DESC, b.id DESC
                LIMIT ? OFFSET ?;
                """,
                (resource_number, resource_number, limit, offset),
            )
            return [self._row_to_reservation(row) for row in cursor.fetchall()]

    def count_reservations(self, resource_number: Optional[str] = None) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT COUNT(*) AS count
                FROM Reservations AS b
                INNER JOIN Resources AS r ON r.id = b.resource_id
                WHERE (? IS NULL OR r.resource_number = ?);
                """,
                (resource_number, resource_number),
            )
            return int(cursor.fetchone()["count"])
