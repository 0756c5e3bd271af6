from __future__ import annotations

import json
import os
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterator

from .api_models import ConnectionSpec, GatewaySpec, GatewayStatus
from .settings import settings


class StoreError(Exception):
    """A read or write against the resource store failed."""


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    If the configured path is a directory (Docker creates one for a missing
    bind-mounted file), the DB file is placed inside it.
    """

    p = os.path.abspath(settings.db_path)

    if os.path.isdir(p):
        p = os.path.join(p, "vgr.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect() -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path(), check_same_thread=False, timeout=10)
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def _tx() -> Iterator[sqlite3.Connection]:
    """One transaction; sqlite failures surface as StoreError."""
    try:
        conn = connect()
    except sqlite3.Error as e:
        raise StoreError(f"cannot open store: {e}") from e
    try:
        with conn:
            yield conn
    except sqlite3.Error as e:
        raise StoreError(f"{type(e).__name__}: {e}") from e
    finally:
        conn.close()


def init_db() -> None:
    """Create tables if they do not exist."""
    with _tx() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS gateways (
              name TEXT PRIMARY KEY,
              spec TEXT NOT NULL,
              status TEXT NOT NULL,
              resource_version INTEGER NOT NULL DEFAULT 1,
              created_at TEXT NOT NULL,
              updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS connections (
              name TEXT PRIMARY KEY,
              labels TEXT NOT NULL,
              spec TEXT NOT NULL,
              resource_version INTEGER NOT NULL DEFAULT 1,
              created_at TEXT NOT NULL,
              updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS workloads (
              name TEXT PRIMARY KEY,
              owner TEXT NOT NULL,
              descriptor TEXT NOT NULL,
              resource_version INTEGER NOT NULL DEFAULT 1,
              created_at TEXT NOT NULL,
              updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              kind TEXT,
              name TEXT,
              message TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            """
        )


def log_event(level: str, message: str, kind: str | None = None, name: str | None = None) -> None:
    with _tx() as conn:
        conn.execute(
            "INSERT INTO events (ts, level, kind, name, message) VALUES (?, ?, ?, ?, ?)",
            (utc_now(), level.upper(), kind, name, message),
        )


def latest_events(limit: int = 100, name: str | None = None) -> list[dict[str, Any]]:
    with _tx() as conn:
        if name:
            rows = conn.execute(
                "SELECT * FROM events WHERE name=? ORDER BY id DESC LIMIT ?", (name, limit)
            ).fetchall()
        else:
            rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]


@dataclass(frozen=True)
class GatewayRow:
    name: str
    spec: GatewaySpec
    status: GatewayStatus
    resource_version: int
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class ConnectionRow:
    name: str
    labels: dict[str, str]
    spec: ConnectionSpec
    resource_version: int
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class WorkloadRow:
    name: str
    owner: str
    descriptor: dict[str, Any]
    resource_version: int
    created_at: str
    updated_at: str


def _dumps(doc: Any) -> str:
    return json.dumps(doc, sort_keys=True)


def _gateway(r: sqlite3.Row) -> GatewayRow:
    return GatewayRow(
        name=r["name"],
        spec=GatewaySpec.model_validate(json.loads(r["spec"])),
        status=GatewayStatus.model_validate(json.loads(r["status"])),
        resource_version=r["resource_version"],
        created_at=r["created_at"],
        updated_at=r["updated_at"],
    )


def _connection(r: sqlite3.Row) -> ConnectionRow:
    return ConnectionRow(
        name=r["name"],
        labels=json.loads(r["labels"]),
        spec=ConnectionSpec.model_validate(json.loads(r["spec"])),
        resource_version=r["resource_version"],
        created_at=r["created_at"],
        updated_at=r["updated_at"],
    )


def _workload(r: sqlite3.Row) -> WorkloadRow:
    return WorkloadRow(
        name=r["name"],
        owner=r["owner"],
        descriptor=json.loads(r["descriptor"]),
        resource_version=r["resource_version"],
        created_at=r["created_at"],
        updated_at=r["updated_at"],
    )


# --- gateways ---

def get_gateway(name: str) -> GatewayRow | None:
    with _tx() as conn:
        row = conn.execute("SELECT * FROM gateways WHERE name=?", (name,)).fetchone()
        return _gateway(row) if row else None


def list_gateways() -> list[GatewayRow]:
    with _tx() as conn:
        rows = conn.execute("SELECT * FROM gateways ORDER BY name").fetchall()
        return [_gateway(r) for r in rows]


def put_gateway(name: str, spec: GatewaySpec) -> GatewayRow:
    """Create a gateway or replace its spec.

    The connection list in the spec is controller-owned and survives a replace.
    """
    now = utc_now()
    with _tx() as conn:
        row = conn.execute("SELECT * FROM gateways WHERE name=?", (name,)).fetchone()
        if row is None:
            doc = spec.model_copy(update={"ipsec_connections": []}).to_doc()
            conn.execute(
                """
                INSERT INTO gateways (name, spec, status, resource_version, created_at, updated_at)
                VALUES (?, ?, ?, 1, ?, ?)
                """,
                (name, _dumps(doc), _dumps(GatewayStatus().to_doc()), now, now),
            )
        else:
            current = json.loads(row["spec"])
            doc = spec.to_doc()
            doc["ipsecConnections"] = current.get("ipsecConnections", [])
            conn.execute(
                """
                UPDATE gateways SET spec=?, resource_version=resource_version+1, updated_at=?
                WHERE name=?
                """,
                (_dumps(doc), now, name),
            )
        return _gateway(conn.execute("SELECT * FROM gateways WHERE name=?", (name,)).fetchone())


def update_gateway_status(name: str, status: GatewayStatus, ipsec_connections: list[str]) -> GatewayRow | None:
    """Persist status and the materialized connection list; nothing else in the spec is touched."""
    with _tx() as conn:
        row = conn.execute("SELECT spec FROM gateways WHERE name=?", (name,)).fetchone()
        if row is None:
            return None
        doc = json.loads(row["spec"])
        doc["ipsecConnections"] = list(ipsec_connections)
        conn.execute(
            """
            UPDATE gateways SET spec=?, status=?, resource_version=resource_version+1, updated_at=?
            WHERE name=?
            """,
            (_dumps(doc), _dumps(status.to_doc()), utc_now(), name),
        )
        return _gateway(conn.execute("SELECT * FROM gateways WHERE name=?", (name,)).fetchone())


def delete_gateway(name: str) -> bool:
    with _tx() as conn:
        cur = conn.execute("DELETE FROM gateways WHERE name=?", (name,))
        return cur.rowcount > 0


# --- connections ---

def get_connection(name: str) -> ConnectionRow | None:
    with _tx() as conn:
        row = conn.execute("SELECT * FROM connections WHERE name=?", (name,)).fetchone()
        return _connection(row) if row else None


def list_connections(labels: dict[str, str] | None = None) -> list[ConnectionRow]:
    """List connections, optionally only those carrying all of ``labels``."""
    sql = "SELECT * FROM connections"
    params: list[Any] = []
    if labels:
        clauses = []
        for k, v in sorted(labels.items()):
            clauses.append("json_extract(labels, ?) = ?")
            params.extend([f'$."{k}"', v])
        sql += " WHERE " + " AND ".join(clauses)
    sql += " ORDER BY name"
    with _tx() as conn:
        return [_connection(r) for r in conn.execute(sql, params).fetchall()]


def put_connection(name: str, spec: ConnectionSpec) -> ConnectionRow:
    """Create a connection or replace its spec. Labels are left to the labeler."""
    now = utc_now()
    with _tx() as conn:
        conn.execute(
            """
            INSERT INTO connections (name, labels, spec, resource_version, created_at, updated_at)
            VALUES (?, '{}', ?, 1, ?, ?)
            ON CONFLICT(name) DO UPDATE SET
              spec=excluded.spec,
              resource_version=connections.resource_version+1,
              updated_at=excluded.updated_at
            """,
            (name, _dumps(spec.to_doc()), now, now),
        )
        return _connection(conn.execute("SELECT * FROM connections WHERE name=?", (name,)).fetchone())


def patch_connection_labels(
    name: str, patch: dict[str, str | None], resource_version: int | None = None
) -> ConnectionRow | None:
    """Merge-patch the labels of a connection. A ``None`` value removes the key.

    With ``resource_version`` the patch only applies to that version of the
    connection; StoreError is raised if it has changed since.
    """
    with _tx() as conn:
        row = conn.execute("SELECT labels, resource_version FROM connections WHERE name=?", (name,)).fetchone()
        if row is None:
            return None
        if resource_version is not None and row["resource_version"] != resource_version:
            raise StoreError(
                f"ipsec connection {name} was modified (resourceVersion {row['resource_version']}, expected {resource_version})"
            )
        labels = json.loads(row["labels"])
        for k, v in patch.items():
            if v is None:
                labels.pop(k, None)
            else:
                labels[k] = v
        conn.execute(
            """
            UPDATE connections SET labels=?, resource_version=resource_version+1, updated_at=?
            WHERE name=? AND resource_version=?
            """,
            (_dumps(labels), utc_now(), name, row["resource_version"]),
        )
        return _connection(conn.execute("SELECT * FROM connections WHERE name=?", (name,)).fetchone())


def delete_connection(name: str) -> ConnectionRow | None:
    """Delete a connection and return what was deleted."""
    with _tx() as conn:
        row = conn.execute("SELECT * FROM connections WHERE name=?", (name,)).fetchone()
        if row is None:
            return None
        conn.execute("DELETE FROM connections WHERE name=?", (name,))
        return _connection(row)


# --- workloads ---

def get_workload(name: str) -> WorkloadRow | None:
    with _tx() as conn:
        row = conn.execute("SELECT * FROM workloads WHERE name=?", (name,)).fetchone()
        return _workload(row) if row else None


def list_workloads() -> list[WorkloadRow]:
    with _tx() as conn:
        rows = conn.execute("SELECT * FROM workloads ORDER BY name").fetchall()
        return [_workload(r) for r in rows]


def create_workload(name: str, owner: str, descriptor: dict[str, Any]) -> WorkloadRow:
    now = utc_now()
    with _tx() as conn:
        conn.execute(
            """
            INSERT INTO workloads (name, owner, descriptor, resource_version, created_at, updated_at)
            VALUES (?, ?, ?, 1, ?, ?)
            """,
            (name, owner, _dumps(descriptor), now, now),
        )
        return _workload(conn.execute("SELECT * FROM workloads WHERE name=?", (name,)).fetchone())


def update_workload(name: str, descriptor: dict[str, Any]) -> WorkloadRow:
    with _tx() as conn:
        cur = conn.execute(
            """
            UPDATE workloads SET descriptor=?, resource_version=resource_version+1, updated_at=?
            WHERE name=?
            """,
            (_dumps(descriptor), utc_now(), name),
        )
        if cur.rowcount == 0:
            raise StoreError(f"workload {name} not found")
        return _workload(conn.execute("SELECT * FROM workloads WHERE name=?", (name,)).fetchone())


def delete_workload(name: str) -> bool:
    with _tx() as conn:
        cur = conn.execute("DELETE FROM workloads WHERE name=?", (name,))
        return cur.rowcount > 0
