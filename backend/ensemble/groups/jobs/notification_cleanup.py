"""Background job for pruning old notification records."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from ensemble.groups.domain import repo as repo_module
from ensemble.obs import metrics as obs_metrics
from ensemble.settings import settings

_JOB_NAME = "notifications-cleanup"


class NotificationCleanupJob:
	"""Deletes notifications whose ``created_at`` is past the retention window."""

	def __init__(self, *, repository: repo_module.GroupsRepository | None = None) -> None:
		self.repo = repository or repo_module.GroupsRepository()

	async def run_once(self, *, now: datetime | None = None) -> int:
		started = datetime.now(timezone.utc)
		cutoff = (now or started) - timedelta(days=settings.notification_retention_days)
		try:
			deleted = await self.repo.delete_notifications_before(cutoff)
			obs_metrics.BACKGROUND_RUNS.labels(name=_JOB_NAME, result="success").inc()
			return deleted
		except Exception:  # pragma: no cover
			obs_metrics.BACKGROUND_RUNS.labels(name=_JOB_NAME, result="error").inc()
			raise
		finally:
			duration = (datetime.now(timezone.utc) - started).total_seconds()
			obs_metrics.BACKGROUND_DURATION.labels(name=_JOB_NAME).observe(duration)
