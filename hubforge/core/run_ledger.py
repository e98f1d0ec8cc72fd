"""Append-only, hash-chained provisioning ledger backed by SQLite.

The ledger is the agent's durable memory across boots: the ``strict_once``
policy and ``hubforge agent status`` both read from it.

Design:
- Append-only: only `append()` writes; no update, no delete.
- Hash-chained per run: each entry seals the hash of the previous one.
- WAL journal mode so ``agent status`` can read while the agent writes.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime
from pathlib import Path

from hubforge.core.hasher import compute_entry_hash
from hubforge.models.ledger import LedgerEntry, LedgerEvent


# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_LEDGER = """
CREATE TABLE IF NOT EXISTS provisioning_ledger (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id            TEXT NOT NULL UNIQUE,
    run_id              TEXT NOT NULL,
    step_id             TEXT NOT NULL,
    event               TEXT NOT NULL,
    state_transition    TEXT NOT NULL DEFAULT '',
    detail              TEXT NOT NULL DEFAULT '',
    timestamp_utc       TEXT NOT NULL,
    previous_entry_hash TEXT NOT NULL DEFAULT '',
    entry_hash          TEXT NOT NULL UNIQUE
);
"""

_CREATE_IDX_RUN = """
CREATE INDEX IF NOT EXISTS idx_run_id ON provisioning_ledger(run_id, id);
"""

_CREATE_IDX_STEP_EVENT = """
CREATE INDEX IF NOT EXISTS idx_step_event ON provisioning_ledger(step_id, event);
"""

_COLUMNS = (
    "id, entry_id, run_id, step_id, event, state_transition, detail, "
    "timestamp_utc, previous_entry_hash, entry_hash"
)


class LedgerIntegrityError(RuntimeError):
    """Raised when the hash chain is broken."""


class RunLedger:
    """Append-only, hash-chained provisioning ledger.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path))
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(_CREATE_LEDGER)
            conn.execute(_CREATE_IDX_RUN)
            conn.execute(_CREATE_IDX_STEP_EVENT)
            conn.commit()

    # ------------------------------------------------------------------
    # Append-only write
    # ------------------------------------------------------------------

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        """Seal *entry* into the chain of its run and persist it.

        Returns the entry with ``previous_entry_hash`` and ``entry_hash`` set.
        """
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

    def record(
        self,
        run_id: str,
        step_id: str,
        event: LedgerEvent,
        *,
        detail: str = "",
        state_transition: str = "",
    ) -> LedgerEntry:
        """Shorthand for building and appending an entry."""
        return self.append(
            LedgerEntry(
                run_id=run_id,
                step_id=step_id,
                event=event,
                detail=detail,
                state_transition=state_transition,
            )
        )

    def _insert(self, entry: LedgerEntry) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO provisioning_ledger
                    (entry_id, run_id, step_id, event, state_transition, detail,
                     timestamp_utc, previous_entry_hash, entry_hash)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.entry_id,
                    entry.run_id,
                    entry.step_id,
                    entry.event.value,
                    entry.state_transition,
                    entry.detail,
                    entry.timestamp_utc.isoformat()
                    if isinstance(entry.timestamp_utc, datetime)
                    else entry.timestamp_utc,
                    entry.previous_entry_hash,
                    entry.entry_hash,
                ),
            )
            conn.commit()

    def _get_latest_hash(self, run_id: str) -> str:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT entry_hash FROM provisioning_ledger "
                "WHERE run_id = ? ORDER BY id DESC LIMIT 1",
                (run_id,),
            ).fetchone()
        return row[0] if row else ""

    # ------------------------------------------------------------------
    # Queries (read-only)
    # ------------------------------------------------------------------

    def get_run_entries(self, run_id: str) -> list[LedgerEntry]:
        """Return all entries for a run, oldest first."""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM provisioning_ledger "
                "WHERE run_id = ? ORDER BY id ASC",
                (run_id,),
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def get_all_run_ids(self) -> list[str]:
        """Return every run_id, most recently started first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT run_id, MIN(id) AS first_id FROM provisioning_ledger "
                "GROUP BY run_id ORDER BY first_id DESC"
            ).fetchall()
        return [row[0] for row in rows]

    def get_latest_run_id(self) -> str | None:
        run_ids = self.get_all_run_ids()
        return run_ids[0] if run_ids else None

    def step_passed_in_any_run(self, step_id: str) -> bool:
        """Whether *step_id* has ever passed on this device."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM provisioning_ledger WHERE step_id = ? AND event = ? LIMIT 1",
                (step_id, LedgerEvent.PASSED.value),
            ).fetchone()
        return row is not None

    # ------------------------------------------------------------------
    # Chain verification
    # ------------------------------------------------------------------

    def verify_chain(self, run_id: str) -> bool:
        """Recompute every entry hash of a run and check the links.

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
            step_id,
            event,
            state_transition,
            detail,
            timestamp_utc,
            previous_entry_hash,
            entry_hash,
        ) = row
        return LedgerEntry(
            entry_id=entry_id,
            run_id=run_id,
            step_id=step_id,
            event=LedgerEvent(event),
            state_transition=state_transition,
            detail=detail,
            timestamp_utc=timestamp_utc,
            previous_entry_hash=previous_entry_hash,
            entry_hash=entry_hash,
        )
