"""Append-only, hash-chained Run Ledger backed by SQLite.

Design:
- Append-only: only ``append()``; no update, no delete.
- Hash-chained: each entry includes the SHA-256 seal of the previous entry.
- WAL journal mode for concurrent readers.
- entry_hash UNIQUE constraint for tamper detection.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path

from wheelforge.core.hasher import compute_entry_hash
from wheelforge.models.ledger import RUN_SUBJECT, LedgerEntry

_CREATE_LEDGER = """
CREATE TABLE IF NOT EXISTS run_ledger (
    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id              TEXT NOT NULL UNIQUE,
    run_id                TEXT NOT NULL,
    subject               TEXT NOT NULL,
    state_transition      TEXT NOT NULL,
    timestamp_utc         TEXT NOT NULL,
    detail                TEXT NOT NULL DEFAULT '',
    artifact_refs_json    TEXT NOT NULL DEFAULT '[]',
    previous_entry_hash   TEXT NOT NULL DEFAULT '',
    entry_hash            TEXT NOT NULL UNIQUE
);
"""

_CREATE_IDX_RUN = """
CREATE INDEX IF NOT EXISTS idx_run_id ON run_ledger(run_id, id);
"""


class LedgerIntegrityError(RuntimeError):
    """Raised when the hash chain is broken."""


class RunLedger:
    """Append-only, hash-chained Run Ledger.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        # Serializes read-latest-then-insert so the chain never forks.
        self._append_lock = threading.Lock()
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(_CREATE_LEDGER)
            conn.execute(_CREATE_IDX_RUN)
            conn.commit()

    # ------------------------------------------------------------------
    # Core: append-only write
    # ------------------------------------------------------------------

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        """Append an entry, computing its hash chain links.

        Returns the entry with ``previous_entry_hash`` and ``entry_hash`` set.
        """
        with self._append_lock:
            previous_hash = self._get_latest_hash(entry.run_id)
            entry_dict = entry.model_dump(mode="json")
            entry_dict["previous_entry_hash"] = previous_hash
            entry_dict["entry_hash"] = ""
            sealed = entry.model_copy(
                update={
                    "previous_entry_hash": previous_hash,
                    "entry_hash": compute_entry_hash(entry_dict),
                }
            )
            self._insert(sealed)
        return sealed

    def _insert(self, entry: LedgerEntry) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO run_ledger
                    (entry_id, run_id, subject, state_transition, timestamp_utc,
                     detail, artifact_refs_json, previous_entry_hash, entry_hash)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.entry_id,
                    entry.run_id,
                    entry.subject,
                    entry.state_transition,
                    entry.timestamp_utc.isoformat()
                    if isinstance(entry.timestamp_utc, datetime)
                    else entry.timestamp_utc,
                    entry.detail,
                    json.dumps(entry.artifact_references),
                    entry.previous_entry_hash,
                    entry.entry_hash,
                ),
            )
            conn.commit()

    def _get_latest_hash(self, run_id: str) -> str:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT entry_hash FROM run_ledger WHERE run_id = ? ORDER BY id DESC LIMIT 1",
                (run_id,),
            ).fetchone()
        return row[0] if row else ""

    # ------------------------------------------------------------------
    # Query methods (read-only)
    # ------------------------------------------------------------------

    def get_run_entries(self, run_id: str) -> list[LedgerEntry]:
        """Return all ledger entries for a run, ordered chronologically."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM run_ledger WHERE run_id = ? ORDER BY id ASC",
                (run_id,),
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def get_all_run_ids(self) -> list[str]:
        """Return all distinct run_ids, most recent first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT run_id FROM run_ledger GROUP BY run_id ORDER BY MAX(id) DESC"
            ).fetchall()
        return [row[0] for row in rows]

    def get_subject_history(self, run_id: str, subject: str) -> list[LedgerEntry]:
        """Return the entries for one subject (``"run"`` or a bundle name)."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM run_ledger WHERE run_id = ? AND subject = ? ORDER BY id ASC",
                (run_id, subject),
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def get_run_states(self, limit: int | None = None) -> list[tuple[str, str]]:
        """Return ``(run_id, state)`` pairs, most recently updated run first.

        ``state`` is the target side of the run's latest run-level transition.
        """
        query = (
            "SELECT run_id, state_transition FROM run_ledger WHERE id IN "
            "(SELECT MAX(id) FROM run_ledger WHERE subject = ? GROUP BY run_id) "
            "ORDER BY id DESC"
        )
        params: tuple = (RUN_SUBJECT,)
        if limit is not None:
            query += " LIMIT ?"
            params += (limit,)
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [(run_id, transition.split("->")[-1]) for run_id, transition in rows]

    # ------------------------------------------------------------------
    # Chain verification
    # ------------------------------------------------------------------

    def verify_chain(self, run_id: str) -> bool:
        """Verify the hash chain for a run.

        Returns True if the chain is valid, raises LedgerIntegrityError otherwise.
        """
        prev_hash = ""
        for entry in self.get_run_entries(run_id):
            if entry.previous_entry_hash != prev_hash:
                raise LedgerIntegrityError(
                    f"Chain broken at entry {entry.entry_id}: "
                    f"expected previous_hash={prev_hash!r}, "
                    f"got {entry.previous_entry_hash!r}"
                )
            expected_hash = compute_entry_hash(entry.model_dump(mode="json"))
            if entry.entry_hash != expected_hash:
                raise LedgerIntegrityError(
                    f"Tampered entry {entry.entry_id}: "
                    f"expected hash={expected_hash!r}, got {entry.entry_hash!r}"
                )
            prev_hash = entry.entry_hash
        return True

    @staticmethod
    def _row_to_entry(row: tuple) -> LedgerEntry:
        (
            _id,
            entry_id,
            run_id,
            subject,
            state_transition,
            timestamp_utc,
            detail,
            artifact_refs_json,
            previous_entry_hash,
            entry_hash,
        ) = row
        return LedgerEntry(
            entry_id=entry_id,
            run_id=run_id,
            subject=subject,
            state_transition=state_transition,
            timestamp_utc=timestamp_utc,
            detail=detail,
            artifact_references=json.loads(artifact_refs_json),
            previous_entry_hash=previous_entry_hash,
            entry_hash=entry_hash,
        )
