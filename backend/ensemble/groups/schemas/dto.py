"""Pydantic schemas for the groups API."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from ensemble.groups.domain.models import ServiceSong


class GroupCreateRequest(BaseModel):
	name: Optional[str] = Field(default=None, max_length=120)
	group_type: Optional[str] = None


class GroupCreateResponse(BaseModel):
	group_id: str
	name: str
	group_type: str
	member_code: str
	regent_code: str
	role: str = "head"


class JoinGroupRequest(BaseModel):
	code: Optional[str] = Field(default=None, max_length=64)


class RosterSlotSummary(BaseModel):
	id: str
	name: str
	voice: Optional[str] = None


class JoinGroupResponse(BaseModel):
	group_id: str
	group_name: str
	role: str
	status: str
	unlinked_members: List[RosterSlotSummary] = Field(default_factory=list)


class LeaveGroupResponse(BaseModel):
	group_id: str
	removed_slots: int


class ClaimMemberRequest(BaseModel):
	target_slot_id: Optional[str] = None


class ClaimMemberResponse(BaseModel):
	slot_id: str
	status: str
	previous_slot_id: Optional[str] = None
	duplicates_marked: int = 0


class MergeMembersRequest(BaseModel):
	from_slot_id: Optional[str] = None
	to_slot_id: Optional[str] = None


class MergeMembersResponse(BaseModel):
	updated_services: int
	removed_slot: bool


class MemberUpdateRequest(BaseModel):
	name: Optional[str] = Field(default=None, max_length=120)
	voice: Optional[str] = Field(default=None, max_length=40)
	role: Optional[str] = None
	permissions: Optional[List[str]] = None


class MemberResponse(BaseModel):
	id: str
	name: str
	voice: Optional[str] = None
	role: str
	has_account: bool
	is_duplicate: bool = False
	permissions: List[str] = Field(default_factory=list)


class DeleteAccountResponse(BaseModel):
	deleted_user_id: str
	existed: bool


class NotificationTokenRequest(BaseModel):
	token: Optional[str] = None


class NotificationTokenResponse(BaseModel):
	removed_from_others: int


class ClaimsMigrationResponse(BaseModel):
	migrated: int
	errors: int
	total: int


class BackfillResponse(BaseModel):
	processed: int
	errors: int
	total: int
	services_marked_finalized: int


class ServiceCreateRequest(BaseModel):
	date: Optional[str] = Field(default=None, pattern=r"^\d{4}-\d{2}-\d{2}")
	title: str = Field(default="", max_length=200)
	songs: List[ServiceSong] = Field(default_factory=list)


class AttendanceVoteRequest(BaseModel):
	slot_id: Optional[str] = None
	present: bool = True


class SongsUpdateRequest(BaseModel):
	songs: List[ServiceSong] = Field(default_factory=list)
