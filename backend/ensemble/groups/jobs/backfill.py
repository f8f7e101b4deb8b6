"""Historical statistics backfill.

Safe to re-run: finalizing an already-finalized record is skipped and the
summary is always fully overwritten.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from ensemble.groups.domain import repo as repo_module, roster
from ensemble.groups.domain.claims import MembershipAuthorizer, require_caller
from ensemble.groups.domain.models import Group
from ensemble.groups.schemas import dto
from ensemble.groups.stats import calculator
from ensemble.infra.auth import AuthenticatedUser
from ensemble.infra.documents import Transaction
from ensemble.obs import metrics as obs_metrics
from ensemble.settings import settings

log = logging.getLogger(__name__)

_JOB_NAME = "groups-stats-backfill"


class StatsBackfillJob:
	def __init__(
		self,
		*,
		repository: repo_module.GroupsRepository | None = None,
		authorizer: MembershipAuthorizer | None = None,
	) -> None:
		self.repo = repository or repo_module.GroupsRepository()
		self.authorizer = authorizer or MembershipAuthorizer(self.repo)

	async def run(self, user: AuthenticatedUser) -> dto.BackfillResponse:
		caller = require_caller(user)
		await self.authorizer.require_super_admin(caller)
		return await self.run_once()

	async def run_once(self) -> dto.BackfillResponse:
		started = datetime.now(timezone.utc)
		processed = 0
		errors = 0
		marked = 0
		groups = await self.repo.list_groups()
		try:
			for group in groups:
				try:
					marked += await self._backfill_group(group)
					processed += 1
				except Exception:
					errors += 1
					log.exception("stats_backfill_group_failed", extra={"group_id": group.id})
			result = "success" if not errors else "partial"
			obs_metrics.BACKGROUND_RUNS.labels(name=_JOB_NAME, result=result).inc()
		except Exception:  # pragma: no cover
			obs_metrics.BACKGROUND_RUNS.labels(name=_JOB_NAME, result="error").inc()
			raise
		finally:
			duration = (datetime.now(timezone.utc) - started).total_seconds()
			obs_metrics.BACKGROUND_DURATION.labels(name=_JOB_NAME).observe(duration)
		log.info(
			"stats_backfill_completed",
			extra={"processed": processed, "errors": errors, "services_marked_finalized": marked},
		)
		return dto.BackfillResponse(
			processed=processed,
			errors=errors,
			total=len(groups),
			services_marked_finalized=marked,
		)

	async def _backfill_group(self, group: Group) -> int:
		records = await self.repo.list_services(group.id)
		updates = [
			(repo_module.service_path(group.id, record.id), {"is_finalized": True})
			for record in records
			if record.deleted_at is None and not record.is_finalized
		]
		marked = await self.repo.update_many(
			updates, chunk_size=settings.backfill_batch_size, fire_triggers=False
		)

		async def _txn(txn: Transaction) -> None:
			current = await self.repo.read_group(txn, group.id)
			if current is None:
				return
			summary = calculator.calculate_stats(
				await self.repo.read_services(txn, group.id),
				roster.real_roster_size(current.members),
				formula=settings.stats_attendance_formula,
				trend_limit=None,
				top_songs_limit=settings.stats_top_songs_limit,
			)
			self.repo.write_summary(txn, group.id, summary)

		await self.repo.run(_txn)
		return marked
