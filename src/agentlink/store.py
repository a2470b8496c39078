"""
agentlink.store — Persistence backends for issued credentials.

Backends: MemoryVCStore, SQLiteVCStore

The store is the authority for the one-credential-per-(agent, user) rule:
``create`` is an atomic check-and-insert (a lock in memory, a UNIQUE index in
SQLite), so two concurrent link requests for the same pair cannot both win.
Updates go through the same lock and are checked against the stored
lifecycle state, never against a copy the caller read earlier.
"""

import json
import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Callable, Optional

from agentlink.credential import (
    AgentVC,
    AnchorRecord,
    Effect,
    SetSignature,
    SetStatus,
    VCStatus,
    apply_effects,
)
from agentlink.errors import DuplicateLinkError, NotFoundError, ValidationError


@dataclass(frozen=True)
class StoredVC:
    vc: AgentVC
    user_id: str
    vc_hash: str
    created_at: float
    updated_at: float

    def to_dict(self) -> dict:
        return {
            "document": self.vc.to_dict(),
            "status": self.vc.status.value,
            "anchor": self.vc.anchor.to_dict() if self.vc.anchor else None,
            "revocationReason": self.vc.revocation_reason,
            "userId": self.user_id,
            "vcHash": self.vc_hash,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StoredVC":
        vc = AgentVC.from_dict(data["document"], status=data["status"])
        anchor = data.get("anchor")
        vc = replace(
            vc,
            anchor=AnchorRecord.from_dict(anchor) if anchor else None,
            revocation_reason=data.get("revocationReason"),
        )
        return cls(
            vc=vc,
            user_id=data["userId"],
            vc_hash=data["vcHash"],
            created_at=data["createdAt"],
            updated_at=data["updatedAt"],
        )


# ─── Abstract Store ────────────────────────────────────────────────

class VCStore(ABC):
    """Credential persistence interface."""

    @abstractmethod
    def create(self, vc: AgentVC, *, user_id: str, vc_hash: str) -> StoredVC:
        """Insert a credential. Raises DuplicateLinkError if the pair exists."""

    @abstractmethod
    def get(self, vc_id: str) -> Optional[StoredVC]: ...

    @abstractmethod
    def find_by_agent_and_user(self, agent_id: str, user_id: str) -> Optional[StoredVC]: ...

    @abstractmethod
    def find_by_agent(self, agent_id: str) -> list[StoredVC]:
        """Newest first."""

    @abstractmethod
    def find_by_signer(self, address: str) -> list[StoredVC]: ...

    @abstractmethod
    def find_by_user(self, user_id: str) -> list[StoredVC]: ...

    @abstractmethod
    def _update(self, vc_id: str, change: Callable[[AgentVC], AgentVC]) -> StoredVC:
        """Read, change and write back one credential while holding the store lock."""

    def apply(self, vc_id: str, effects: list[Effect]) -> StoredVC:
        """Apply transition effects to the current stored credential.

        Effects that do not fit the stored state (a second signature, a status
        change the lifecycle forbids) raise ValidationError and nothing is written.
        """
        return self._update(vc_id, lambda vc: apply_effects(vc, effects))

    def transition(self, vc_id: str,
                   step: Callable[[AgentVC], tuple[AgentVC, list[Effect]]]) -> StoredVC:
        """Run a pure transition against the stored value and persist its effects.

        ``step`` sees the credential as it is under the lock, so a transition
        decided on an earlier read cannot overwrite a later one.
        """
        return self._update(vc_id, lambda vc: apply_effects(vc, step(vc)[1]))

    def update_signature(self, vc_id: str, signature: str,
                         signer_address: str, signed_at: int) -> StoredVC:
        return self.apply(vc_id, [
            SetSignature(signature, signer_address, signed_at),
            SetStatus(VCStatus.SIGNED),
        ])

    def close(self) -> None:
        pass


def _require_user(user_id: str) -> None:
    if not user_id:
        raise ValidationError("user_id is required to store a credential")


def _newest_first(records) -> list[StoredVC]:
    return sorted(records, key=lambda r: r.created_at, reverse=True)


# ─── Memory Store ──────────────────────────────────────────────────

class MemoryVCStore(VCStore):
    """In-process store (default, for testing and single-node demos)."""

    def __init__(self):
        self._by_id: dict[str, StoredVC] = {}
        self._pairs: dict[tuple[str, str], str] = {}
        self._lock = threading.Lock()

    def create(self, vc: AgentVC, *, user_id: str, vc_hash: str) -> StoredVC:
        _require_user(user_id)
        pair = (vc.agent_id.lower(), user_id)
        now = time.time()
        record = StoredVC(vc=vc, user_id=user_id, vc_hash=vc_hash, created_at=now, updated_at=now)
        with self._lock:
            if pair in self._pairs:
                raise DuplicateLinkError(vc.agent_id, user_id, self._pairs[pair])
            if vc.vc_id in self._by_id:
                raise ValidationError(f"Duplicate credential id {vc.vc_id}")
            self._by_id[vc.vc_id] = record
            self._pairs[pair] = vc.vc_id
        return record

    def get(self, vc_id: str) -> Optional[StoredVC]:
        return self._by_id.get(vc_id)

    def find_by_agent_and_user(self, agent_id: str, user_id: str) -> Optional[StoredVC]:
        vc_id = self._pairs.get((agent_id.lower(), user_id))
        return self._by_id.get(vc_id) if vc_id else None

    def find_by_agent(self, agent_id: str) -> list[StoredVC]:
        key = agent_id.lower()
        return _newest_first(r for r in self._by_id.values() if r.vc.agent_id.lower() == key)

    def find_by_signer(self, address: str) -> list[StoredVC]:
        key = address.lower()
        return _newest_first(
            r for r in self._by_id.values()
            if r.vc.signer_address and r.vc.signer_address.lower() == key
        )

    def find_by_user(self, user_id: str) -> list[StoredVC]:
        return _newest_first(r for r in self._by_id.values() if r.user_id == user_id)

    def _update(self, vc_id: str, change: Callable[[AgentVC], AgentVC]) -> StoredVC:
        with self._lock:
            record = self._by_id.get(vc_id)
            if record is None:
                raise NotFoundError(f"Credential {vc_id} not found")
            updated = replace(record, vc=change(record.vc), updated_at=time.time())
            self._by_id[vc_id] = updated
        return updated


# ─── SQLite Store ──────────────────────────────────────────────────

class SQLiteVCStore(VCStore):
    """File-based SQLite with WAL mode, thread-safe."""

    def __init__(self, db_path: str = "agentlink.db"):
        self._db_path = db_path
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS vcs (
                vc_id TEXT PRIMARY KEY,
                agent_key TEXT NOT NULL,
                user_id TEXT NOT NULL,
                signer_key TEXT,
                vc_hash TEXT NOT NULL,
                status TEXT NOT NULL,
                data TEXT NOT NULL,
                created_at REAL NOT NULL,
                updated_at REAL NOT NULL
            )
        """)
        self._conn.execute(
            "CREATE UNIQUE INDEX IF NOT EXISTS idx_agent_user ON vcs(agent_key, user_id)"
        )
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_signer ON vcs(signer_key)")
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_user ON vcs(user_id)")
        self._conn.commit()

    def create(self, vc: AgentVC, *, user_id: str, vc_hash: str) -> StoredVC:
        _require_user(user_id)
        now = time.time()
        record = StoredVC(vc=vc, user_id=user_id, vc_hash=vc_hash, created_at=now, updated_at=now)
        with self._lock:
            try:
                self._conn.execute(
                    "INSERT INTO vcs (vc_id, agent_key, user_id, signer_key, vc_hash, status, "
                    "data, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (vc.vc_id, vc.agent_id.lower(), user_id,
                     vc.signer_address.lower() if vc.signer_address else None,
                     vc_hash, vc.status.value, json.dumps(record.to_dict()), now, now),
                )
                self._conn.commit()
            except sqlite3.IntegrityError as e:
                self._conn.rollback()
                row = self._conn.execute(
                    "SELECT vc_id FROM vcs WHERE agent_key = ? AND user_id = ?",
                    (vc.agent_id.lower(), user_id),
                ).fetchone()
                if row:
                    raise DuplicateLinkError(vc.agent_id, user_id, row[0]) from e
                raise ValidationError(f"Duplicate credential id {vc.vc_id}") from e
        return record

    def _rows(self, sql: str, params: tuple) -> list[StoredVC]:
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [StoredVC.from_dict(json.loads(r[0])) for r in rows]

    def get(self, vc_id: str) -> Optional[StoredVC]:
        found = self._rows("SELECT data FROM vcs WHERE vc_id = ?", (vc_id,))
        return found[0] if found else None

    def find_by_agent_and_user(self, agent_id: str, user_id: str) -> Optional[StoredVC]:
        found = self._rows(
            "SELECT data FROM vcs WHERE agent_key = ? AND user_id = ?",
            (agent_id.lower(), user_id),
        )
        return found[0] if found else None

    def find_by_agent(self, agent_id: str) -> list[StoredVC]:
        return self._rows(
            "SELECT data FROM vcs WHERE agent_key = ? ORDER BY created_at DESC",
            (agent_id.lower(),),
        )

    def find_by_signer(self, address: str) -> list[StoredVC]:
        return self._rows(
            "SELECT data FROM vcs WHERE signer_key = ? ORDER BY created_at DESC",
            (address.lower(),),
        )

    def find_by_user(self, user_id: str) -> list[StoredVC]:
        return self._rows(
            "SELECT data FROM vcs WHERE user_id = ? ORDER BY created_at DESC", (user_id,)
        )

    def _update(self, vc_id: str, change: Callable[[AgentVC], AgentVC]) -> StoredVC:
        with self._lock:
            row = self._conn.execute("SELECT data FROM vcs WHERE vc_id = ?", (vc_id,)).fetchone()
            if row is None:
                raise NotFoundError(f"Credential {vc_id} not found")
            record = StoredVC.from_dict(json.loads(row[0]))
            updated = replace(record, vc=change(record.vc), updated_at=time.time())
            self._conn.execute(
                "UPDATE vcs SET signer_key = ?, status = ?, data = ?, updated_at = ? WHERE vc_id = ?",
                (updated.vc.signer_address.lower() if updated.vc.signer_address else None,
                 updated.vc.status.value, json.dumps(updated.to_dict()), updated.updated_at, vc_id),
            )
            self._conn.commit()
        return updated

    def close(self):
        self._conn.close()


def open_store(db_path: Optional[str] = None) -> VCStore:
    """SQLite when a path is given, memory otherwise."""
    return SQLiteVCStore(db_path) if db_path else MemoryVCStore()


__all__ = [
    "StoredVC",
    "VCStore",
    "MemoryVCStore",
    "SQLiteVCStore",
    "open_store",
]
