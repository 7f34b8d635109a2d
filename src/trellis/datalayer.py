"""Host data layer: where the persisted strategy creates entities.

``DataLayer`` is the protocol the persisted strategy talks to.
``SQLiteDataLayer`` is the bundled implementation: one ``records`` table
holding every kind as JSON, named create actions, required-attribute and
actor checks, and real transactions so a failed run leaves nothing behind.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from collections.abc import Callable, Iterable, Iterator, Mapping
from contextlib import AbstractContextManager, contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from trellis.entities import Entity
from trellis.schema import KindSchema, SchemaCatalog

if TYPE_CHECKING:
    from trellis.strategies import CreateOptions

logger = logging.getLogger(__name__)

SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS records (
    kind        TEXT NOT NULL,
    id          TEXT NOT NULL,
    tenant      TEXT,
    data        TEXT NOT NULL DEFAULT '{}',
    created_at  TEXT NOT NULL,
    PRIMARY KEY (kind, id)
);

CREATE INDEX IF NOT EXISTS idx_records_kind ON records(kind);
CREATE INDEX IF NOT EXISTS idx_records_tenant ON records(kind, tenant);
"""

CreateAction = Callable[[dict[str, Any], "CreateOptions"], Mapping[str, Any]]


class DataLayer(Protocol):
    def create(self, kind: str, attributes: dict[str, Any], options: CreateOptions) -> Any: ...

    def transaction(self, kinds: Iterable[str]) -> AbstractContextManager[None]: ...


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _default_action(attributes: dict[str, Any], options: CreateOptions) -> Mapping[str, Any]:
    return attributes


class SQLiteDataLayer:
    """Persists entities to SQLite. One connection, so one instance per thread."""

    def __init__(self, db_path: str | Path, catalog: SchemaCatalog | None = None, *, check_same_thread: bool = True) -> None:
        self.db_path = Path(db_path) if str(db_path) != ":memory:" else db_path
        self.catalog = catalog if catalog is not None else SchemaCatalog()
        self._conn: sqlite3.Connection | None = None
        self._check_same_thread = check_same_thread
        self._actions: dict[tuple[str, str], CreateAction] = {}
        self._in_transaction = False

    def __enter__(self) -> SQLiteDataLayer:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(
                str(self.db_path),
                isolation_level="DEFERRED",
                check_same_thread=self._check_same_thread,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA busy_timeout=5000")
        return self._conn

    def initialize(self) -> None:
        self.conn.executescript(SCHEMA_SQL)
        self.conn.commit()

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # -- Actions --------------------------------------------------------------

    def register_action(self, kind: str, name: str, action: CreateAction) -> None:
        """Register a named create operation for ``kind``.

        The action receives the attributes and options and returns the
        attributes to store; raising ``ValueError`` rejects the create.
        """
        self._actions[(kind, name)] = action

    def _action_for(self, kind: str, name: str) -> CreateAction:
        action = self._actions.get((kind, name))
        if action is not None:
            return action
        if name == "create":
            return _default_action
        known = sorted(n for k, n in self._actions if k == kind)
        msg = f"Unknown create action {name!r} for {kind}. Known: {', '.join(['create', *known])}"
        raise ValueError(msg)

    # -- Writes ---------------------------------------------------------------

    @contextmanager
    def transaction(self, kinds: Iterable[str] = ()) -> Iterator[None]:
        """Run a block atomically: commit on success, roll back on any error.

        Nested calls join the outer transaction.
        """
        if self._in_transaction:
            yield
            return
        kinds = list(kinds)
        self._in_transaction = True
        try:
            yield
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            logger.warning("Rolled back transaction over %s", ", ".join(kinds) or "(no kinds)", extra={"component": "datalayer"})
            raise
        finally:
            self._in_transaction = False

    def create(self, kind: str, attributes: dict[str, Any], options: CreateOptions) -> Entity:
        schema = self.catalog.get(kind) or KindSchema(kind=kind)
        action = self._action_for(kind, options.action or schema.create_action)
        values = dict(action(dict(attributes), options))

        self._check_authorized(schema, options)
        self._check_required(schema, values)
        for key in options.virtual_keys:
            values.pop(key, None)

        pk_field = schema.primary_key or "id"
        record_id = values.pop(pk_field, None)
        if record_id is None:
            record_id = str(uuid.uuid4())
        now = _now_iso()
        for ts in schema.timestamps:
            if values.get(ts) is None:
                values[ts] = now
        tenant = options.tenant
        if schema.partition_key:
            values.pop(schema.partition_key, None)

        try:
            self.conn.execute(
                "INSERT INTO records (kind, id, tenant, data, created_at) VALUES (?, ?, ?, ?, ?)",
                (kind, str(record_id), None if tenant is None else str(tenant), json.dumps(values, default=str), now),
            )
            if not self._in_transaction:
                self.conn.commit()
        except sqlite3.IntegrityError as exc:
            if not self._in_transaction:
                self.conn.rollback()
            msg = f"{kind} with {pk_field}={record_id!r} already exists"
            raise ValueError(msg) from exc
        return self._to_entity(schema, str(record_id), tenant, values)

    def _check_authorized(self, schema: KindSchema, options: CreateOptions) -> None:
        if options.authorize and options.actor is None and schema.requires_actor:
            msg = f"Forbidden: creating {schema.kind} requires an actor when authorization is enabled"
            raise PermissionError(msg)

    def _check_required(self, schema: KindSchema, values: Mapping[str, Any]) -> None:
        missing = [attr for attr in schema.required if values.get(attr) is None]
        if missing:
            msg = f"{schema.kind}: required attribute(s) missing or null: {', '.join(missing)}"
            raise ValueError(msg)

    # -- Reads ----------------------------------------------------------------

    def read(self, kind: str, tenant: str | None = None) -> list[Entity]:
        schema = self.catalog.get(kind) or KindSchema(kind=kind)
        if tenant is None:
            rows = self.conn.execute("SELECT * FROM records WHERE kind = ? ORDER BY rowid", (kind,)).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM records WHERE kind = ? AND tenant = ? ORDER BY rowid",
                (kind, tenant),
            ).fetchall()
        return [self._to_entity(schema, r["id"], r["tenant"], json.loads(r["data"])) for r in rows]

    def count(self, kind: str | None = None) -> int:
        if kind is None:
            row = self.conn.execute("SELECT COUNT(*) FROM records").fetchone()
        else:
            row = self.conn.execute("SELECT COUNT(*) FROM records WHERE kind = ?", (kind,)).fetchone()
        result: int = row[0]
        return result

    def kinds(self) -> list[str]:
        rows = self.conn.execute("SELECT DISTINCT kind FROM records ORDER BY kind").fetchall()
        return [r["kind"] for r in rows]

    @staticmethod
    def _to_entity(schema: KindSchema, record_id: str, tenant: Any, data: Mapping[str, Any]) -> Entity:
        fields: dict[str, Any] = {schema.primary_key or "id": record_id, **data}
        if schema.partition_key:
            fields[schema.partition_key] = tenant
        return Entity(schema.kind, fields)
