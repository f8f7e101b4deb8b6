"""API surface tests for the groups endpoints."""

from __future__ import annotations

import pytest

from ensemble.groups.api import groups as groups_api
from ensemble.groups.api import stats as stats_api
from ensemble.groups.domain.exceptions import InternalError
from ensemble.groups.domain.models import RosterSlot
from ensemble.groups.schemas import dto
from ensemble.infra import jwt as jwt_helper

BASE = "/api/groups/v1"


def _headers(user_id: str, groups: str | None = None, email: str | None = None) -> dict[str, str]:
	headers = {"X-User-Id": user_id}
	if groups:
		headers["X-User-Groups"] = groups
	if email:
		headers["X-User-Email"] = email
	return headers


@pytest.mark.asyncio
async def test_requests_without_identity_are_rejected(api_client):
	resp = await api_client.post(f"{BASE}/groups", json={"name": "Choir", "group_type": "msc"})
	assert resp.status_code == 401
	assert resp.json()["detail"] == "unauthenticated"


@pytest.mark.asyncio
async def test_create_join_claim_flow(api_client, seed):
	created = await api_client.post(
		f"{BASE}/groups",
		json={"name": "Choir", "group_type": "standard"},
		headers=_headers("head-1"),
	)
	assert created.status_code == 201
	body = created.json()
	group_id = body["group_id"]
	assert body["role"] == "head"

	group = await seed.load_group(group_id)
	group.members.append(RosterSlot(id="manual_1", name="Alice", voice="alto"))
	await seed.group(
		group_id,
		group.members,
		member_code=group.member_code,
		regent_code=group.regent_code,
		name=group.name,
	)

	joined = await api_client.post(
		f"{BASE}/groups/join",
		json={"code": body["member_code"].lower()},
		headers=_headers("u-2"),
	)
	assert joined.status_code == 200
	assert joined.json()["status"] == "joined"
	assert [slot["id"] for slot in joined.json()["unlinked_members"]] == ["manual_1"]

	claimed = await api_client.post(
		f"{BASE}/groups/{group_id}/members/claim",
		json={"target_slot_id": "manual_1"},
		headers=_headers("u-2"),
	)
	assert claimed.status_code == 200
	assert claimed.json()["status"] == "linked"

	forbidden = await api_client.post(
		f"{BASE}/groups/{group_id}/members/merge",
		json={"from_slot_id": "manual_1", "to_slot_id": "head-1"},
		headers=_headers("u-2"),
	)
	assert forbidden.status_code == 403
	assert forbidden.json()["detail"] == "elevated_role_required"


@pytest.mark.asyncio
async def test_domain_errors_map_to_status_codes(api_client):
	bad_type = await api_client.post(
		f"{BASE}/groups",
		json={"name": "Choir", "group_type": "orchestra"},
		headers=_headers("u-1"),
	)
	assert bad_type.status_code == 422
	assert bad_type.json()["detail"] == "invalid_group_type"

	bad_code = await api_client.post(f"{BASE}/groups/join", json={"code": "ZZZZZZ"}, headers=_headers("u-1"))
	assert bad_code.status_code == 404
	assert bad_code.json()["detail"] == "invalid_invite_code"


@pytest.mark.asyncio
async def test_bearer_token_claims_authorize_elevated_routes(api_client, seed):
	await seed.group("g1", [RosterSlot(id="s1", name="Alice")])
	token = jwt_helper.encode_access("h-1", groups={"g1": "head"})

	resp = await api_client.post(
		f"{BASE}/groups/g1/services",
		json={"date": "2024-03-03", "title": "Sunday"},
		headers={"Authorization": f"Bearer {token}"},
	)

	assert resp.status_code == 201
	assert resp.json()["date"] == "2024-03-03"

	invalid = await api_client.get(f"{BASE}/groups/g1/stats", headers={"Authorization": "Bearer not-a-token"})
	assert invalid.status_code == 401


@pytest.mark.asyncio
async def test_service_routes_and_stats_read(api_client, seed):
	await seed.group("g1", [RosterSlot(id="s1", name="Alice"), RosterSlot(id="s2", name="Bob")])
	head = _headers("h-1", groups="g1:head")

	created = await api_client.post(f"{BASE}/groups/g1/services", json={"date": "2024-03-03"}, headers=head)
	service_id = created.json()["id"]
	vote = await api_client.post(
		f"{BASE}/groups/g1/services/{service_id}/attendance",
		json={"slot_id": "s2", "present": False},
		headers=head,
	)
	assert vote.status_code == 200
	final = await api_client.post(f"{BASE}/groups/g1/services/{service_id}/finalize", headers=head)
	assert final.json()["is_finalized"] is True

	stats = await api_client.get(f"{BASE}/groups/g1/stats", headers=_headers("m-1", groups="g1:member"))
	assert stats.status_code == 200
	assert stats.json()["attendance_trend"] == [{"date": "2024-03-03", "percentage": 50, "present": 1, "total": 2}]

	bad_date = await api_client.post(f"{BASE}/groups/g1/services", json={"date": "March"}, headers=head)
	assert bad_date.status_code == 422


@pytest.mark.asyncio
async def test_stats_for_group_without_summary_is_empty(api_client, seed):
	await seed.group("g1", [])
	resp = await api_client.get(f"{BASE}/groups/g1/stats", headers=_headers("m-1", groups="g1:member"))
	assert resp.status_code == 200
	assert resp.json()["total_services"] == 0


@pytest.mark.asyncio
async def test_backfill_endpoint_uses_job(api_client, monkeypatch):
	class StubBackfill:
		async def run(self, auth_user):
			assert auth_user.email == "root@ensemble.test"
			return dto.BackfillResponse(processed=3, errors=0, total=3, services_marked_finalized=7)

	monkeypatch.setattr(stats_api, "_backfill", StubBackfill())

	resp = await api_client.post(
		f"{BASE}/admin/stats/backfill",
		headers=_headers("root", email="root@ensemble.test"),
	)

	assert resp.status_code == 200
	assert resp.json()["services_marked_finalized"] == 7


@pytest.mark.asyncio
async def test_internal_errors_become_500(api_client, monkeypatch):
	class StubService:
		async def leave_group(self, auth_user, group_id):
			raise InternalError("transaction_contention")

	monkeypatch.setattr(groups_api, "_service", StubService())

	resp = await api_client.post(f"{BASE}/groups/g1/leave", headers=_headers("u-1"))

	assert resp.status_code == 500
	assert resp.json()["detail"] == "transaction_contention"


@pytest.mark.asyncio
async def test_account_routes(api_client, seed):
	await seed.group("g1", [RosterSlot(id="u-1", name="Uma", has_account=True, account_uid="u-1")])
	token = await api_client.post(
		f"{BASE}/users/me/notification-tokens",
		json={"token": "device-1"},
		headers=_headers("u-1"),
	)
	assert token.status_code == 200
	assert token.json()["removed_from_others"] == 0

	denied = await api_client.delete(f"{BASE}/users/u-1", headers=_headers("m-1", groups="g1:member"))
	assert denied.status_code == 403

	deleted = await api_client.delete(f"{BASE}/users/me", headers=_headers("u-1"))
	assert deleted.status_code == 200
	assert deleted.json() == {"deleted_user_id": "u-1", "existed": True}


@pytest.mark.asyncio
async def test_ops_endpoints(api_client):
	live = await api_client.get("/health/live")
	assert live.json() == {"status": "ok"}
	metrics = await api_client.get("/metrics")
	assert metrics.status_code == 200
	assert "ensemble_membership_operations_total" in metrics.text


@pytest.mark.asyncio
async def test_member_patch_does_not_expose_device_tokens(api_client, seed):
	await seed.group(
		"g1",
		[RosterSlot(id="s1", name="Uma", has_account=True, account_uid="u-1", notification_tokens=["device-1"])],
	)

	resp = await api_client.patch(
		f"{BASE}/groups/g1/members/s1",
		json={"voice": "alto"},
		headers=_headers("h-1", groups="g1:head"),
	)

	assert resp.status_code == 200
	body = resp.json()
	assert body["voice"] == "alto"
	assert body["has_account"] is True
	assert "notification_tokens" not in body
	assert "account_uid" not in body
