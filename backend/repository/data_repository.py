"""Repository layer responsible for all reservation database access."""

from __future__ import annotations

import sqlite3
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Optional
from uuid import uuid4

from backend.domain.errors import BackendUnavailableError
from backend.domain.models import (
    OCCUPYING_RESERVATION_STATUSES,
    AllocationPlan,
    ConfirmedReservation,
    DateRange,
    PricingResult,
)
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


class DataRepository:
    """Encapsulates SQLite access so the engine stays storage-agnostic."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(
            self._db_path,
            timeout=self._settings.backend_timeout_seconds,
        )
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._connect() as conn:
                cursor = conn.cursor()

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Reservations (
                        id TEXT PRIMARY KEY,
                        guest_ref TEXT NOT NULL,
                        check_in TEXT NOT NULL,
                        check_out TEXT NOT NULL,
                        status TEXT NOT NULL DEFAULT 'CONFIRMED',
                        total_price_cents INTEGER NOT NULL CHECK (total_price_cents >= 0),
                        currency TEXT NOT NULL,
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS ReservationRooms (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        reservation_id TEXT NOT NULL,
                        room_id TEXT NOT NULL,
                        beds_count INTEGER NOT NULL CHECK (beds_count > 0),
                        FOREIGN KEY (reservation_id) REFERENCES Reservations(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_reservations_dates_status
                    ON Reservations(check_in, check_out, status);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_reservation_rooms_reservation
                    ON ReservationRooms(reservation_id);
                    """
                )
                conn.commit()
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise BackendUnavailableError(f"Database initialization failed: {exc}") from exc

    def fetch_confirmed_reservations(
        self,
        date_range: DateRange,
        exclude_id: Optional[str] = None,
    ) -> list[ConfirmedReservation]:
        """Return occupying reservation lines overlapping ``date_range``."""
        statuses = sorted(OCCUPYING_RESERVATION_STATUSES)
        placeholders = ", ".join("?" for _ in statuses)
        query = f"""
            SELECT r.id AS reservation_id, rr.room_id, rr.beds_count,
                   r.check_in, r.check_out, r.status
            FROM Reservations r
            JOIN ReservationRooms rr ON rr.reservation_id = r.id
            WHERE r.status IN ({placeholders})
              AND r.check_in < ?
              AND r.check_out > ?
        """
        params: list[object] = [
            *statuses,
            date_range.check_out.isoformat(),
            date_range.check_in.isoformat(),
        ]
        if exclude_id is not None:
            query += " AND r.id != ?"
            params.append(exclude_id)
        query += " ORDER BY r.check_in ASC, rr.id ASC;"

        try:
            with self._connect() as conn:
                rows = conn.execute(query, params).fetchall()
        except sqlite3.Error as exc:
            logger.exception("Reservation fetch failed")
            raise BackendUnavailableError(f"Reservation store unavailable: {exc}") from exc

        return [
            ConfirmedReservation(
                reservation_id=str(row["reservation_id"]),
                room_id=str(row["room_id"]),
                beds_count=int(row["beds_count"]),
                date_range=DateRange(
                    check_in=date.fromisoformat(row["check_in"]),
                    check_out=date.fromisoformat(row["check_out"]),
                ),
                status=str(row["status"]),
            )
            for row in rows
        ]

    def record_reservation(
        self,
        plan: AllocationPlan,
        pricing: PricingResult,
        guest_ref: str,
        date_range: DateRange,
        status: str = "CONFIRMED",
    ) -> str:
        reservation_id = f"RES-{uuid4().hex[:12].upper()}"
        created_at = datetime.now(timezone.utc).isoformat()
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    """
                    INSERT INTO Reservations (
                        id, guest_ref, check_in, check_out, status,
                        total_price_cents, currency, created_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?);
                    """,
                    (
                        reservation_id,
                        guest_ref,
                        date_range.check_in.isoformat(),
                        date_range.check_out.isoformat(),
                        status,
                        pricing.total_price_cents,
                        pricing.currency,
                        created_at,
                    ),
                )
                cursor.executemany(
                    """
                    INSERT INTO ReservationRooms (reservation_id, room_id, beds_count)
                    VALUES (?, ?, ?);
                    """,
                    [
                        (reservation_id, allocation.room_id, allocation.beds_assigned)
                        for allocation in plan.allocations
                    ],
                )
                conn.commit()
        except sqlite3.Error as exc:
            logger.exception("Reservation insert failed | guest_ref=%s", guest_ref)
            raise BackendUnavailableError(f"Reservation store unavailable: {exc}") from exc

        logger.info(
            "Reservation recorded | reservation_id=%s | rooms=%s | beds=%s | total_cents=%s",
            reservation_id,
            plan.rooms_used,
            plan.total_beds,
            pricing.total_price_cents,
        )
        return reservation_id

    def update_reservation_status(self, reservation_id: str, status: str) -> bool:
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    "UPDATE Reservations SET status = ? WHERE id = ?;",
                    (status, reservation_id),
                )
                conn.commit()
                return cursor.rowcount > 0
        except sqlite3.Error as exc:
            raise BackendUnavailableError(f"Reservation store unavailable: {exc}") from exc

    def get_reservation_status(self, reservation_id: str) -> Optional[str]:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT status FROM Reservations WHERE id = ?;",
                    (reservation_id,),
                ).fetchone()
        except sqlite3.Error as exc:
            raise BackendUnavailableError(f"Reservation store unavailable: {exc}") from exc
        if row is None:
            return None
        return str(row["status"])

    def count_reservations(self) -> int:
        try:
            with self._connect() as conn:
                row = conn.execute("SELECT COUNT(*) AS count FROM Reservations;").fetchone()
        except sqlite3.Error as exc:
            raise BackendUnavailableError(f"Reservation store unavailable: {exc}") from exc
        return int(row["count"])
