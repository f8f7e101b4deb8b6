"""Write-triggered statistics recompute."""

from __future__ import annotations

import logging
import time
from typing import Optional

from ensemble.groups.domain import repo as repo_module, roster
from ensemble.groups.domain.models import StatsSummary
from ensemble.groups.stats import calculator, guard
from ensemble.infra.documents import DocumentChange, DocumentStore, Transaction
from ensemble.obs import metrics as obs_metrics
from ensemble.settings import settings

log = logging.getLogger(__name__)

SERVICE_PATTERN = "groups/{group_id}/services/{service_id}"


class StatsAggregator:
	"""Keeps ``groups/{gid}/stats/summary`` in step with the group's event records."""

	def __init__(self, repository: repo_module.GroupsRepository | None = None) -> None:
		self.repo = repository or repo_module.GroupsRepository()

	def register(self, store: DocumentStore) -> None:
		store.on_write(SERVICE_PATTERN, self.handle_change)

	async def handle_change(self, change: DocumentChange) -> None:
		group_id = change.params["group_id"]
		service_id = change.params["service_id"]
		before = guard.record_from_document(service_id, change.before)
		after = guard.record_from_document(service_id, change.after)
		if not guard.is_stats_relevant_change(before, after):
			obs_metrics.inc_stats_trigger("skipped")
			return
		obs_metrics.inc_stats_trigger("recompute")
		await self.recompute(group_id)

	async def recompute(self, group_id: str) -> Optional[StatsSummary]:
		"""Rebuild the summary from every record in one transaction.

		Returns ``None`` when the group no longer exists.
		"""
		started = time.perf_counter()

		async def _txn(txn: Transaction) -> Optional[StatsSummary]:
			group = await self.repo.read_group(txn, group_id)
			if group is None:
				log.warning("stats_group_missing", extra={"group_id": group_id})
				return None
			records = await self.repo.read_services(txn, group_id)
			if len(records) > settings.stats_scale_warning_threshold:
				obs_metrics.inc_stats_scale_warning()
				log.warning(
					"stats_scale_warning",
					extra={"group_id": group_id, "records": len(records)},
				)
			summary = calculator.calculate_stats(
				records,
				roster.real_roster_size(group.members),
				formula=settings.stats_attendance_formula,
				trend_limit=settings.stats_trend_limit,
				top_songs_limit=settings.stats_top_songs_limit,
			)
			self.repo.write_summary(txn, group_id, summary)
			return summary

		summary = await self.repo.run(_txn)
		obs_metrics.observe_stats_recompute(time.perf_counter() - started)
		if summary is not None:
			log.info(
				"stats_recomputed",
				extra={"group_id": group_id, "total_services": summary.total_services},
			)
		return summary
