"""Domain models for groups, rosters, users and event records."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def _unique(values: List[str]) -> List[str]:
	seen: set[str] = set()
	result: List[str] = []
	for value in values:
		if value and value not in seen:
			seen.add(value)
			result.append(value)
	return result


class _Document(BaseModel):
	"""Base for models persisted as documents; ``id`` is the document key."""

	model_config = ConfigDict(extra="ignore")

	id: str

	@classmethod
	def from_document(cls, doc_id: str, data: Dict[str, Any]):
		return cls.model_validate({**data, "id": doc_id})

	def to_document(self) -> Dict[str, Any]:
		return self.model_dump(mode="json", exclude={"id"})


class Membership(BaseModel):
	"""Entry in a user's membership list."""

	group_id: str
	group_name: str = ""
	role: str = "member"
	group_type: Optional[str] = None


class UserRecord(_Document):
	"""Per-user profile with the active-group pointer."""

	name: str = ""
	email: Optional[str] = None
	group_id: Optional[str] = None
	group_name: Optional[str] = None
	role: Optional[str] = None
	voice: Optional[str] = None
	permissions: List[str] = Field(default_factory=list)
	memberships: List[Membership] = Field(default_factory=list)
	notification_tokens: List[str] = Field(default_factory=list)
	notifications_enabled: bool = False
	created_at: Optional[datetime] = None
	updated_at: Optional[datetime] = None

	def membership_for(self, group_id: str) -> Optional[Membership]:
		for membership in self.memberships:
			if membership.group_id == group_id:
				return membership
		return None

	def effective_memberships(self) -> List[Membership]:
		"""Memberships, falling back to the active group for legacy records."""
		if self.memberships:
			return list(self.memberships)
		if self.group_id:
			return [
				Membership(group_id=self.group_id, group_name=self.group_name or "", role=self.role or "member")
			]
		return []

	def adopt_legacy_membership(self) -> None:
		"""Turn a legacy active-group pointer into an explicit membership entry."""
		if not self.memberships and self.group_id:
			self.memberships = self.effective_memberships()


class AdminCode(BaseModel):
	code: str
	label: Optional[str] = None
	permissions: List[str] = Field(default_factory=list)


class RosterSlot(BaseModel):
	"""One row of a group's embedded roster."""

	model_config = ConfigDict(extra="ignore")

	id: str
	name: str = ""
	voice: Optional[str] = None
	role: str = "member"
	has_account: bool = False
	account_uid: Optional[str] = None
	linked_user_ids: List[str] = Field(default_factory=list)
	is_duplicate: bool = False
	permissions: List[str] = Field(default_factory=list)
	notification_tokens: List[str] = Field(default_factory=list)

	def resolves_to(self, user_id: str) -> bool:
		return self.account_uid == user_id or user_id in self.linked_user_ids

	def refresh_has_account(self) -> None:
		self.has_account = bool(self.account_uid or self.linked_user_ids)


class Group(_Document):
	name: str
	group_type: str
	member_code: str
	regent_code: str
	admin_codes: List[AdminCode] = Field(default_factory=list)
	members: List[RosterSlot] = Field(default_factory=list)
	created_by: Optional[str] = None
	created_at: Optional[datetime] = None


class MemberMirror(BaseModel):
	"""Lightweight per-user membership row kept under the group."""

	user_id: str
	role: str
	joined_at: datetime


class ServiceSong(BaseModel):
	song_id: str
	song_title: Optional[str] = None


class ServiceRecord(_Document):
	"""An event record ("service") with its attendance sets."""

	date: str
	title: str = ""
	songs: List[ServiceSong] = Field(default_factory=list)
	confirmed_members: List[str] = Field(default_factory=list)
	absent_members: List[str] = Field(default_factory=list)
	deleted_at: Optional[datetime] = None
	is_finalized: bool = False
	created_by: Optional[str] = None

	def normalised(self) -> "ServiceRecord":
		return self.model_copy(
			update={
				"confirmed_members": _unique(self.confirmed_members),
				"absent_members": _unique(self.absent_members),
			}
		)


class AttendanceTrendEntry(BaseModel):
	date: str
	percentage: int
	present: int
	total: int


class SongCount(BaseModel):
	song_id: str
	title: str
	count: int


class MemberStat(BaseModel):
	present_count: int = 0
	absent_count: int = 0
	services_with_record: int = 0
	attendance_rate: int = 100


class StatsSummary(BaseModel):
	"""Derived per-group summary; only the aggregator writes it."""

	total_services: int = 0
	average_attendance: int = 0
	attendance_trend: List[AttendanceTrendEntry] = Field(default_factory=list)
	top_songs: List[SongCount] = Field(default_factory=list)
	all_songs: List[SongCount] = Field(default_factory=list)
	member_stats: Dict[str, MemberStat] = Field(default_factory=dict)


class AuthorizationClaims(BaseModel):
	groups: Dict[str, str] = Field(default_factory=dict)
	super_admin: bool = False

	def to_claims(self) -> Dict[str, Any]:
		claims: Dict[str, Any] = {"groups": dict(sorted(self.groups.items()))}
		if self.super_admin:
			claims["super_admin"] = True
		return claims
