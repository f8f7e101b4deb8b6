"""In-process document store used by tests and local development."""

from __future__ import annotations

import asyncio
import copy
from typing import Dict, List, Optional, Sequence

from ensemble.infra.documents import (
	Document,
	DocumentChange,
	DocumentSnapshot,
	DocumentStore,
	TransactionConflict,
	WhereClause,
	WriteOp,
	collection_of,
	matches_where,
	stage_writes,
)


class MemoryDocumentStore(DocumentStore):
	"""Keeps documents in a dict; commits are serialised by a single lock."""

	def __init__(self) -> None:
		super().__init__()
		self._docs: Dict[str, Document] = {}
		# Versions survive deletes so a delete-then-recreate is still a change.
		self._versions: Dict[str, int] = {}
		self._lock = asyncio.Lock()

	def _snapshot(self, path: str) -> DocumentSnapshot:
		data = self._docs.get(path)
		return DocumentSnapshot(
			path=path,
			data=copy.deepcopy(data) if data is not None else None,
			version=self._versions.get(path, 0),
		)

	def _paths_in(self, collection: str) -> List[str]:
		return sorted(path for path in self._docs if collection_of(path) == collection)

	async def _read(self, path: str) -> DocumentSnapshot:
		collection_of(path)
		return self._snapshot(path)

	async def _read_collection(self, collection: str) -> List[DocumentSnapshot]:
		return [self._snapshot(path) for path in self._paths_in(collection)]

	async def _apply(
		self,
		reads: Dict[str, int],
		collections: Dict[str, frozenset[str]],
		ops: Sequence[WriteOp],
	) -> List[DocumentChange]:
		async with self._lock:
			for path, version in reads.items():
				if self._versions.get(path, 0) != version:
					raise TransactionConflict(path)
			for collection, members in collections.items():
				if frozenset(self._paths_in(collection)) != members:
					raise TransactionConflict(collection)
			current: Dict[str, Optional[Document]] = {op.path: self._docs.get(op.path) for op in ops}
			staged, changes = stage_writes(current, ops)
			for path, data in staged.items():
				self._versions[path] = self._versions.get(path, 0) + 1
				if data is None:
					self._docs.pop(path, None)
				else:
					self._docs[path] = data
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
		snapshots = [
			snap
			for snap in await self._read_collection(collection)
			if snap.data is not None and matches_where(snap.data, where)
		]
		if order_by:
			present = [snap for snap in snapshots if snap.data.get(order_by) is not None]  # type: ignore[union-attr]
			missing = [snap for snap in snapshots if snap.data.get(order_by) is None]  # type: ignore[union-attr]
			present.sort(key=lambda snap: snap.data[order_by], reverse=descending)  # type: ignore[index]
			snapshots = present + missing
		if limit is not None:
			snapshots = snapshots[:limit]
		return snapshots
