from __future__ import annotations

import pytest

from ensemble.groups.domain import repo as repo_module
from ensemble.groups.domain.claims import ClaimsSyncer, MembershipAuthorizer, build_claims
from ensemble.groups.domain.exceptions import InvalidArgumentError, PermissionDeniedError
from ensemble.groups.domain.models import Membership, RosterSlot, UserRecord
from ensemble.groups.domain.services import MembershipService
from ensemble.groups.schemas import dto
from ensemble.infra.auth import AuthenticatedUser
from ensemble.infra.identity import get_identity_provider


async def _seed_two_groups(seed) -> None:
	await seed.group(
		"g1",
		[RosterSlot(id="u", name="Uma", has_account=True, account_uid="u", notification_tokens=["tok"])],
		member_code="AAAAAA",
		regent_code="BBBBBB",
	)
	await seed.group(
		"g2",
		[
			RosterSlot(id="manual_1", name="Shared", has_account=True, account_uid="x", linked_user_ids=["u"]),
			RosterSlot(id="manual_2", name="Only me", has_account=True, linked_user_ids=["u"]),
		],
		member_code="CCCCCC",
		regent_code="DDDDDD",
	)
	await seed.user(
		UserRecord(
			id="u",
			group_id="g1",
			role="member",
			memberships=[Membership(group_id="g1", role="member"), Membership(group_id="g2", role="member")],
			notification_tokens=["tok"],
		)
	)
	for group_id in ("g1", "g2"):
		await seed.store.set(repo_module.member_mirror_path(group_id, "u"), {"user_id": "u", "role": "member"})
	await get_identity_provider().set_custom_claims("u", {"groups": {"g1": "member", "g2": "member"}})


@pytest.mark.asyncio
async def test_delete_self_keeps_slots_but_strips_account(seed):
	await _seed_two_groups(seed)

	response = await MembershipService().delete_self(AuthenticatedUser(id="u"))

	assert response.deleted_user_id == "u"
	assert response.existed is True
	g1 = await seed.load_group("g1")
	assert [(s.id, s.account_uid, s.has_account, s.notification_tokens) for s in g1.members] == [
		("u", None, False, [])
	]
	g2 = await seed.load_group("g2")
	assert [(s.id, s.account_uid, s.linked_user_ids, s.has_account) for s in g2.members] == [
		("manual_1", "x", [], True),
		("manual_2", None, [], False),
	]
	assert await seed.load_user("u") is None
	assert await seed.load(repo_module.member_mirror_path("g1", "u")) is None
	assert await seed.load(repo_module.member_mirror_path("g2", "u")) is None
	assert await get_identity_provider().get_custom_claims("u") == {}


@pytest.mark.asyncio
async def test_delete_uses_active_group_for_legacy_records(seed):
	await seed.group("g1", [RosterSlot(id="u", name="Legacy", has_account=True, account_uid="u")])
	await seed.user(UserRecord(id="u", group_id="g1", role="member"))

	await MembershipService().delete_self(AuthenticatedUser(id="u"))

	group = await seed.load_group("g1")
	assert group.members[0].has_account is False


@pytest.mark.asyncio
async def test_delete_missing_user_still_clears_principal():
	await get_identity_provider().set_custom_claims("ghost", {"groups": {"g1": "member"}})

	response = await MembershipService().delete_self(AuthenticatedUser(id="ghost"))

	assert response.existed is False
	assert await get_identity_provider().get_custom_claims("ghost") == {}


@pytest.mark.asyncio
async def test_delete_user_requires_user_admin_and_rejects_self(seed):
	await _seed_two_groups(seed)
	service = MembershipService()

	with pytest.raises(InvalidArgumentError):
		await service.delete_user(AuthenticatedUser(id="h", groups={"g1": "head"}), "h")
	with pytest.raises(PermissionDeniedError):
		await service.delete_user(AuthenticatedUser(id="m", groups={"g1": "member"}), "u")

	response = await service.delete_user(AuthenticatedUser(id="h", groups={"g9": "regent"}), "u")
	assert response.existed is True
	assert await seed.load_user("u") is None


@pytest.mark.asyncio
async def test_delete_user_falls_back_to_stored_roles(seed):
	await _seed_two_groups(seed)
	await seed.user(UserRecord(id="h", memberships=[Membership(group_id="g2", role="head")]))

	response = await MembershipService().delete_user(AuthenticatedUser(id="h"), "u")

	assert response.existed is True


# --- notification tokens --------------------------------------------------------


@pytest.mark.asyncio
async def test_register_token_moves_it_between_users(seed):
	await seed.user(UserRecord(id="a", notification_tokens=["device-1", "device-2"]))
	await seed.user(UserRecord(id="b"))
	service = MembershipService()

	first = await service.register_notification_token(
		AuthenticatedUser(id="b"), dto.NotificationTokenRequest(token="device-1")
	)
	second = await service.register_notification_token(
		AuthenticatedUser(id="b"), dto.NotificationTokenRequest(token="device-1")
	)

	assert first.removed_from_others == 1
	assert second.removed_from_others == 0
	a = await seed.load_user("a")
	b = await seed.load_user("b")
	assert a.notification_tokens == ["device-2"]
	assert b.notification_tokens == ["device-1"]
	assert b.notifications_enabled is True


@pytest.mark.asyncio
async def test_register_token_validates_length():
	service = MembershipService()
	caller = AuthenticatedUser(id="b")
	with pytest.raises(InvalidArgumentError):
		await service.register_notification_token(caller, dto.NotificationTokenRequest(token=""))
	with pytest.raises(InvalidArgumentError):
		await service.register_notification_token(caller, dto.NotificationTokenRequest(token="x" * 4097))


# --- claims -----------------------------------------------------------------------


def test_build_claims_falls_back_to_active_group_and_flags_super_admin():
	legacy = UserRecord(id="u", email="ROOT@ensemble.test", group_id="g1", role="regent")
	modern = UserRecord(
		id="v",
		group_id="g1",
		role="regent",
		memberships=[Membership(group_id="g2", role="member"), Membership(group_id="g1", role="head")],
	)

	assert build_claims(legacy).to_claims() == {"groups": {"g1": "regent"}, "super_admin": True}
	assert build_claims(modern).to_claims() == {"groups": {"g1": "head", "g2": "member"}}


@pytest.mark.asyncio
async def test_sync_best_effort_swallows_identity_failures(seed, monkeypatch):
	await seed.user(UserRecord(id="u", memberships=[Membership(group_id="g1", role="member")]))
	identity = get_identity_provider()

	async def _boom(uid, claims):
		raise RuntimeError("identity down")

	monkeypatch.setattr(identity, "set_custom_claims", _boom)

	await ClaimsSyncer(identity=identity).sync_best_effort("u")


@pytest.mark.asyncio
async def test_authorizer_prefers_claims_then_store(seed):
	await seed.user(UserRecord(id="u", memberships=[Membership(group_id="g1", role="regent")]))
	authorizer = MembershipAuthorizer()

	assert await authorizer.require_member(AuthenticatedUser(id="x", groups={"g1": "member"}), "g1") == "member"
	assert await authorizer.require_elevated(AuthenticatedUser(id="u", groups={"g1": "member"}), "g1") == "regent"
	with pytest.raises(PermissionDeniedError):
		await authorizer.require_member(AuthenticatedUser(id="u"), "g2")
	with pytest.raises(PermissionDeniedError):
		await authorizer.require_super_admin(AuthenticatedUser(id="u"))
	await authorizer.require_super_admin(AuthenticatedUser(id="r", super_admin=True))


@pytest.mark.asyncio
async def test_migrate_all_claims_counts_failures(seed, monkeypatch):
	for uid in ("a", "b", "c"):
		await seed.user(UserRecord(id=uid, memberships=[Membership(group_id="g1", role="member")]))
	service = MembershipService()
	original = service.claims.sync_user_claims

	async def _flaky(user_id: str):
		if user_id == "b":
			raise RuntimeError("identity down")
		return await original(user_id)

	monkeypatch.setattr(service.claims, "sync_user_claims", _flaky)

	with pytest.raises(PermissionDeniedError):
		await service.migrate_all_claims(AuthenticatedUser(id="a"))
	response = await service.migrate_all_claims(AuthenticatedUser(id="r", email="root@ensemble.test"))

	assert (response.migrated, response.errors, response.total) == (2, 1, 3)
	assert await get_identity_provider().get_custom_claims("c") == {"groups": {"g1": "member"}}


@pytest.mark.asyncio
async def test_delete_user_accepts_legacy_admin_role(seed):
	await _seed_two_groups(seed)
	await seed.user(UserRecord(id="a", memberships=[Membership(group_id="g2", role="admin")]))
	service = MembershipService()

	from_claims = await service.delete_user(AuthenticatedUser(id="a", groups={"g2": "admin"}), "ghost")
	from_store = await service.delete_user(AuthenticatedUser(id="a"), "u")

	assert from_claims.existed is False
	assert from_store.existed is True
