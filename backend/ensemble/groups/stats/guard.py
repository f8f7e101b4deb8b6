"""Decides whether an event record write should trigger a summary recompute."""

from __future__ import annotations

from typing import Any, Dict, Optional

from ensemble.groups.domain.models import ServiceRecord


def _song_key(record: ServiceRecord) -> list[tuple[str, Optional[str]]]:
	return [(song.song_id, song.song_title) for song in record.songs]


def is_stats_relevant_change(before: Optional[ServiceRecord], after: Optional[ServiceRecord]) -> bool:
	"""Return ``True`` when the write can change the group's summary.

	Votes on open records only touch the attendance sets and are ignored.
	Once a record is finalized, attendance edits (corrections, merges) do
	count because finalized records feed the attendance figures.
	"""
	if before is None and after is None:
		return False
	if before is None or after is None:
		return True
	if before.is_finalized != after.is_finalized:
		return True
	if before.deleted_at != after.deleted_at:
		return True
	if not after.is_finalized:
		return False
	if _song_key(before) != _song_key(after):
		return True
	return set(before.confirmed_members) != set(after.confirmed_members) or set(before.absent_members) != set(
		after.absent_members
	)


def record_from_document(doc_id: str, data: Optional[Dict[str, Any]]) -> Optional[ServiceRecord]:
	if data is None:
		return None
	return ServiceRecord.from_document(doc_id, data)
