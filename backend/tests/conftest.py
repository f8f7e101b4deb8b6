import sys
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from ensemble.groups.domain import repo as repo_module
from ensemble.groups.domain.models import Group, RosterSlot, ServiceRecord, UserRecord
from ensemble.groups.stats.aggregator import StatsAggregator
from ensemble.infra import postgres
from ensemble.infra.memory_store import MemoryDocumentStore
from ensemble.infra.store import set_store
from ensemble.main import app
from ensemble.settings import settings

SUPER_ADMIN_EMAIL = "root@ensemble.test"


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from ensemble.infra.redis import set_redis_client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(None)
		await client.flushall()


@pytest.fixture(autouse=True)
def store():
	"""Fresh in-memory record store with the stats trigger attached."""
	memory = MemoryDocumentStore()
	StatsAggregator().register(memory)
	set_store(memory)
	try:
		yield memory
	finally:
		set_store(None)


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Dev mode enables the X-User-* headers used by API tests."""
	original_env = settings.environment
	original_admins = settings.super_admin_emails
	original_jobs = settings.jobs_enabled
	settings.environment = "dev"
	settings.super_admin_emails = (SUPER_ADMIN_EMAIL,)
	settings.jobs_enabled = False
	try:
		yield
	finally:
		settings.environment = original_env
		settings.super_admin_emails = original_admins
		settings.jobs_enabled = original_jobs


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client


class Seeder:
	"""Writes fixture documents straight into the record store."""

	def __init__(self, memory: MemoryDocumentStore) -> None:
		self.store = memory

	async def group(
		self,
		group_id: str,
		members: Iterable[RosterSlot],
		*,
		member_code: str = "MEMB01",
		regent_code: str = "REGT01",
		**fields: Any,
	) -> Group:
		group = Group(
			id=group_id,
			name=fields.pop("name", f"Group {group_id}"),
			group_type=fields.pop("group_type", "standard"),
			member_code=member_code,
			regent_code=regent_code,
			members=list(members),
			created_at=fields.pop("created_at", repo_module.utcnow()),
			**fields,
		)
		await self.store.set(repo_module.group_path(group_id), group.to_document())
		return group

	async def user(self, user: UserRecord) -> UserRecord:
		await self.store.set(repo_module.user_path(user.id), user.to_document())
		return user

	async def service(self, group_id: str, record: ServiceRecord) -> ServiceRecord:
		await self.store.set(repo_module.service_path(group_id, record.id), record.to_document())
		return record

	async def load(self, path: str) -> Optional[Dict[str, Any]]:
		return (await self.store.get(path)).data

	async def load_group(self, group_id: str) -> Group:
		data = await self.load(repo_module.group_path(group_id))
		assert data is not None
		return Group.from_document(group_id, data)

	async def load_user(self, user_id: str) -> Optional[UserRecord]:
		data = await self.load(repo_module.user_path(user_id))
		return UserRecord.from_document(user_id, data) if data is not None else None


@pytest.fixture
def seed(store) -> Seeder:
	return Seeder(store)
