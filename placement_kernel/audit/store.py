"""
Policy Audit Store — append-only, hash-chained record of policy events.

Plugs into the PolicyEngine as its audit sink.

Behavioral Contract:
- Append-only. No entry is ever modified or deleted.
- Each entry is hashed together with the previous entry's hash, so any
  edit to a stored entry breaks the chain from that point on.
- Queryable by process, target, rule and event type.
"""

import hashlib
import json
import sqlite3
from datetime import datetime
from typing import List, Optional

from placement_kernel.models.policy import PolicyAuditEntry


def _entry_hash(entry_json: str, prior_hash: Optional[str]) -> str:
    payload = json.dumps(
        {"entry": json.loads(entry_json), "prior": prior_hash or ""},
        sort_keys=True,
        default=str,
    )
    return hashlib.sha256(payload.encode()).hexdigest()


class AuditStore:
    """SQLite-backed audit trail. Use ":memory:" for a process-local store."""

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self) -> None:
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS policy_audit (
                id TEXT PRIMARY KEY,
                event_type TEXT NOT NULL,
                process_id TEXT NOT NULL,
                target_id TEXT NOT NULL,
                rule_id TEXT,
                decision TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                signature TEXT NOT NULL,
                prior_record_hash TEXT,
                entry_json TEXT NOT NULL
            )
        """)
        self._conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_audit_process ON policy_audit(process_id)"
        )
        self._conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_audit_rule ON policy_audit(rule_id)"
        )
        self._conn.commit()

    def append(self, entry: PolicyAuditEntry) -> str:
        """Store an entry chained to the previous one. Returns its signature."""
        prior_hash = self._get_latest_hash()
        entry_json = entry.model_dump_json()
        signature = _entry_hash(entry_json, prior_hash)
        self._conn.execute(
            """
            INSERT INTO policy_audit (
                id, event_type, process_id, target_id, rule_id, decision,
                timestamp, signature, prior_record_hash, entry_json
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.id,
                entry.event_type,
                entry.process_id,
                entry.target_id,
                entry.rule_id,
                entry.decision.value,
                entry.timestamp.isoformat(),
                signature,
                prior_hash,
                entry_json,
            ),
        )
        self._conn.commit()
        return signature

    def _get_latest_hash(self) -> Optional[str]:
        row = self._conn.execute(
            "SELECT signature FROM policy_audit ORDER BY rowid DESC LIMIT 1"
        ).fetchone()
        return row["signature"] if row else None

    def _query(self, where: str = "", params: tuple = ()) -> List[PolicyAuditEntry]:
        rows = self._conn.execute(
            f"SELECT entry_json FROM policy_audit {where} ORDER BY rowid", params
        ).fetchall()
        return [PolicyAuditEntry.model_validate_json(r["entry_json"]) for r in rows]

    def query_by_process(self, process_id: str) -> List[PolicyAuditEntry]:
        return self._query("WHERE process_id = ?", (process_id,))

    def query_by_target(self, target_id: str) -> List[PolicyAuditEntry]:
        return self._query("WHERE target_id = ?", (target_id,))

    def query_by_rule(self, rule_id: str) -> List[PolicyAuditEntry]:
        """All violations of a given rule."""
        return self._query("WHERE rule_id = ?", (rule_id,))

    def query_violations(self, since: Optional[datetime] = None) -> List[PolicyAuditEntry]:
        if since:
            return self._query(
                "WHERE event_type = 'violation' AND timestamp >= ?", (since.isoformat(),)
            )
        return self._query("WHERE event_type = 'violation'")

    def query_recent(self, limit: int = 50) -> List[PolicyAuditEntry]:
        rows = self._conn.execute(
            "SELECT entry_json FROM policy_audit ORDER BY rowid DESC LIMIT ?", (limit,)
        ).fetchall()
        return [PolicyAuditEntry.model_validate_json(r["entry_json"]) for r in reversed(rows)]

    def verify_chain(self) -> bool:
        """Recompute every signature and chain link."""
        rows = self._conn.execute(
            "SELECT entry_json, signature, prior_record_hash FROM policy_audit ORDER BY rowid"
        ).fetchall()
        previous = None
        for row in rows:
            if row["prior_record_hash"] != previous:
                return False
            if _entry_hash(row["entry_json"], previous) != row["signature"]:
                return False
            previous = row["signature"]
        return True

    def count(self) -> int:
        row = self._conn.execute("SELECT COUNT(*) as cnt FROM policy_audit").fetchone()
        return row["cnt"]

    def close(self) -> None:
        self._conn.close()
