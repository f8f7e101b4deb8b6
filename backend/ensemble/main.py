"""FastAPI application entrypoint."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from ensemble.api import ops
from ensemble.groups import api as groups_api
from ensemble.groups.jobs.notification_cleanup import NotificationCleanupJob
from ensemble.groups.stats.aggregator import StatsAggregator
from ensemble.infra import postgres
from ensemble.infra.scheduler import JobScheduler
from ensemble.infra.store import get_store
from ensemble.obs import init as obs_init
from ensemble.settings import settings


async def bootstrap_store():
	"""Build the configured document store and attach the stats trigger."""
	store = get_store()
	ensure_schema = getattr(store, "ensure_schema", None)
	if callable(ensure_schema):
		await postgres.init_pool()
		await ensure_schema()
	StatsAggregator().register(store)
	return store


@asynccontextmanager
async def lifespan(app: FastAPI):
	await bootstrap_store()
	scheduler: JobScheduler | None = None
	if settings.jobs_enabled:
		cleanup_job = NotificationCleanupJob()
		scheduler = JobScheduler()
		scheduler.add_interval_job(
			"notifications-cleanup",
			cleanup_job.run_once,
			hours=settings.notification_cleanup_interval_hours,
		)
		scheduler.start()
		app.state.job_scheduler = scheduler
	try:
		yield
	finally:
		if scheduler is not None:
			scheduler.shutdown()
		await postgres.close_pool()


app = FastAPI(title="Ensemble Groups Core", lifespan=lifespan)
obs_init(app)

app.include_router(ops.router)
app.include_router(groups_api.router)
