"""Postgres-backed document store.

Each document is one row of the ``documents`` table holding JSONB data and a
version counter. Deletes keep a tombstone row (``data IS NULL``) so versions
keep increasing across delete/recreate cycles.
"""

from __future__ import annotations

import json
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import asyncpg

from ensemble.infra import postgres
from ensemble.infra.documents import (
	Document,
	DocumentChange,
	DocumentSnapshot,
	DocumentStore,
	StoreError,
	TransactionConflict,
	WhereClause,
	WriteOp,
	collection_of,
	stage_writes,
)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS documents (
	path TEXT PRIMARY KEY,
	collection TEXT NOT NULL,
	data JSONB,
	version BIGINT NOT NULL DEFAULT 1,
	updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS documents_collection_idx ON documents (collection) WHERE data IS NOT NULL;
"""

_FIELD_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _field(name: str) -> str:
	if not _FIELD_RE.match(name):
		raise StoreError(f"invalid_field:{name}")
	return name


def build_query_sql(
	collection: str,
	*,
	where: Sequence[WhereClause] = (),
	order_by: Optional[str] = None,
	descending: bool = False,
	limit: Optional[int] = None,
) -> Tuple[str, List[Any]]:
	"""Translate a document query into SQL over the JSONB column."""
	clauses = ["collection = $1", "data IS NOT NULL"]
	args: List[Any] = [collection]
	for name, op, value in where:
		if op == "==":
			args.append(json.dumps(value))
			clauses.append(f"data -> '{_field(name)}' = ${len(args)}::jsonb")
		elif op == "<":
			args.append(json.dumps(value))
			clauses.append(f"data -> '{_field(name)}' < ${len(args)}::jsonb")
		elif op == "array_contains":
			args.append(json.dumps([value]))
			clauses.append(f"data -> '{_field(name)}' @> ${len(args)}::jsonb")
		else:
			raise StoreError(f"unsupported_operator:{op}")
	sql = "SELECT path, data, version FROM documents WHERE " + " AND ".join(clauses)
	if order_by:
		direction = "DESC" if descending else "ASC"
		sql += f" ORDER BY data -> '{_field(order_by)}' {direction} NULLS LAST, path"
	else:
		sql += " ORDER BY path"
	if limit is not None:
		args.append(int(limit))
		sql += f" LIMIT ${len(args)}"
	return sql, args


def _decode(raw: Any) -> Optional[Document]:
	if raw is None:
		return None
	if isinstance(raw, str):
		return json.loads(raw)
	return dict(raw)


class PostgresDocumentStore(DocumentStore):
	"""Document store over asyncpg using row locks for version checks."""

	def __init__(self, pool_provider: Callable[[], Awaitable[asyncpg.pool.Pool]] = postgres.get_pool) -> None:
		super().__init__()
		self._pool_provider = pool_provider

	async def ensure_schema(self) -> None:
		pool = await self._pool_provider()
		async with pool.acquire() as conn:
			await conn.execute(SCHEMA_SQL)

	async def _read(self, path: str) -> DocumentSnapshot:
		collection_of(path)
		pool = await self._pool_provider()
		async with pool.acquire() as conn:
			record = await conn.fetchrow("SELECT data, version FROM documents WHERE path=$1", path)
		if not record:
			return DocumentSnapshot(path=path, data=None, version=0)
		return DocumentSnapshot(path=path, data=_decode(record["data"]), version=record["version"])

	async def _read_collection(self, collection: str) -> List[DocumentSnapshot]:
		return await self.query(collection)

	async def _apply(
		self,
		reads: Dict[str, int],
		collections: Dict[str, frozenset[str]],
		ops: Sequence[WriteOp],
	) -> List[DocumentChange]:
		paths = sorted(set(reads) | {op.path for op in ops})
		pool = await self._pool_provider()
		async with pool.acquire() as conn:
			try:
				async with conn.transaction(isolation="repeatable_read"):
					rows = await conn.fetch(
						"SELECT path, data, version FROM documents WHERE path = ANY($1::text[]) ORDER BY path FOR UPDATE",
						paths,
					)
					current_versions = {row["path"]: row["version"] for row in rows}
					current_data = {row["path"]: _decode(row["data"]) for row in rows}
					for path, version in reads.items():
						if current_versions.get(path, 0) != version:
							raise TransactionConflict(path)
					for collection, members in collections.items():
						live = await conn.fetch(
							"SELECT path FROM documents WHERE collection=$1 AND data IS NOT NULL",
							collection,
						)
						if frozenset(row["path"] for row in live) != members:
							raise TransactionConflict(collection)
					staged, changes = stage_writes(
						{op.path: current_data.get(op.path) for op in ops},
						ops,
					)
					for path, data in staged.items():
						await conn.execute(
							"""
							INSERT INTO documents (path, collection, data, version)
							VALUES ($1, $2, $3::jsonb, 1)
							ON CONFLICT (path) DO UPDATE
							SET data = EXCLUDED.data, version = documents.version + 1, updated_at = NOW()
							""",
							path,
							collection_of(path),
							json.dumps(data) if data is not None else None,
						)
			except (asyncpg.SerializationError, asyncpg.DeadlockDetectedError) as exc:  # type: ignore[attr-defined]
				raise TransactionConflict(str(exc)) from exc
		return changes

	async def query(
		self,
		collection: str,
		*,
		where: Sequence[WhereClause] = (),
		order_by: Optional[str] = None,
		descending: bool = False,
		limit: Optional[int] = None,
	) -> List[DocumentSnapshot]:
		sql, args = build_query_sql(collection, where=where, order_by=order_by, descending=descending, limit=limit)
		pool = await self._pool_provider()
		async with pool.acquire() as conn:
			rows = await conn.fetch(sql, *args)
		return [
			DocumentSnapshot(path=row["path"], data=_decode(row["data"]), version=row["version"])
			for row in rows
		]
