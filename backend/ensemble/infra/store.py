"""Process-wide document store accessor."""

from __future__ import annotations

from typing import Optional

from ensemble.infra.documents import DocumentStore
from ensemble.settings import settings

_store: Optional[DocumentStore] = None


def _build_store() -> DocumentStore:
	backend = settings.document_store_backend.lower()
	if backend == "postgres":
		from ensemble.infra.pg_store import PostgresDocumentStore

		return PostgresDocumentStore()
	if backend == "memory":
		from ensemble.infra.memory_store import MemoryDocumentStore

		return MemoryDocumentStore()
	raise ValueError(f"unknown document store backend: {backend}")


def get_store() -> DocumentStore:
	global _store
	if _store is None:
		_store = _build_store()
	return _store


def set_store(store: Optional[DocumentStore]) -> None:
	global _store
	_store = store
