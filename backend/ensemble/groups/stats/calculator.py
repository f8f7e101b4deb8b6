"""Pure summary computation over a group's event records.

The output depends only on the set of records and the roster size: records
are sorted by ``(date, id)`` first, so input order never leaks into the
trend or the song tie-breaks.
"""

from __future__ import annotations

import math
from typing import Dict, Iterable, List, Optional

from ensemble.groups.domain.models import AttendanceTrendEntry, MemberStat, ServiceRecord, SongCount, StatsSummary

ABSENT_COMPLEMENT = "absent_complement"
CONFIRMED_COUNT = "confirmed_count"


def round_half_up(value: float) -> int:
	return int(math.floor(value + 0.5))


def percentage(part: int, whole: int) -> int:
	if whole <= 0:
		return 0
	return round_half_up(part / whole * 100)


def present_count(record: ServiceRecord, total_members: int, formula: str) -> int:
	if formula == CONFIRMED_COUNT:
		return len(set(record.confirmed_members))
	return max(total_members - len(set(record.absent_members)), 0)


def _song_counts(records: Iterable[ServiceRecord]) -> List[SongCount]:
	counts: Dict[str, int] = {}
	titles: Dict[str, str] = {}
	for record in records:
		for song in record.songs:
			if not song.song_id:
				continue
			counts[song.song_id] = counts.get(song.song_id, 0) + 1
			if song.song_title:
				titles[song.song_id] = song.song_title
	ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
	return [SongCount(song_id=song_id, title=titles.get(song_id, ""), count=count) for song_id, count in ordered]


def _member_stats(records: Iterable[ServiceRecord]) -> Dict[str, MemberStat]:
	stats: Dict[str, MemberStat] = {}
	for record in records:
		for slot_id in set(record.confirmed_members):
			entry = stats.setdefault(slot_id, MemberStat())
			entry.present_count += 1
			entry.services_with_record += 1
		for slot_id in set(record.absent_members):
			entry = stats.setdefault(slot_id, MemberStat())
			entry.absent_count += 1
			entry.services_with_record += 1
	for entry in stats.values():
		entry.attendance_rate = (
			percentage(entry.present_count, entry.services_with_record) if entry.services_with_record else 100
		)
	return dict(sorted(stats.items()))


def calculate_stats(
	records: Iterable[ServiceRecord],
	total_members: int,
	*,
	formula: str = ABSENT_COMPLEMENT,
	trend_limit: Optional[int] = 10,
	top_songs_limit: int = 20,
) -> StatsSummary:
	live = sorted((r for r in records if r.deleted_at is None), key=lambda r: (r.date, r.id))
	finalized = [r for r in live if r.is_finalized]

	trend: List[AttendanceTrendEntry] = []
	for record in finalized:
		present = present_count(record, total_members, formula)
		trend.append(
			AttendanceTrendEntry(
				date=record.date,
				percentage=percentage(present, total_members),
				present=present,
				total=total_members,
			)
		)
	average = round_half_up(sum(entry.percentage for entry in trend) / len(trend)) if trend else 0
	if trend_limit is not None:
		trend = trend[-trend_limit:] if trend_limit > 0 else []

	all_songs = _song_counts(live)
	return StatsSummary(
		total_services=len(live),
		average_attendance=average,
		attendance_trend=trend,
		top_songs=all_songs[:top_songs_limit],
		all_songs=all_songs,
		member_stats=_member_stats(finalized),
	)
