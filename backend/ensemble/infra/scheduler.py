"""Interval scheduling for background maintenance jobs."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler

log = logging.getLogger(__name__)

JobFunc = Callable[[], Awaitable[object]]


class JobScheduler:
	"""Runs coroutine jobs on fixed intervals, at most one run of each job at a time."""

	def __init__(self, scheduler: AsyncIOScheduler | None = None) -> None:
		self._scheduler = scheduler or AsyncIOScheduler(timezone="UTC")

	def add_interval_job(self, job_id: str, func: JobFunc, *, hours: int) -> None:
		self._scheduler.add_job(
			func,
			"interval",
			hours=max(1, hours),
			id=job_id,
			replace_existing=True,
			coalesce=True,
			max_instances=1,
		)
		log.info("job_scheduled", extra={"job_id": job_id, "interval_hours": max(1, hours)})

	def start(self) -> None:
		if not self._scheduler.running:
			self._scheduler.start()

	def shutdown(self) -> None:
		if self._scheduler.running:
			self._scheduler.shutdown(wait=False)
