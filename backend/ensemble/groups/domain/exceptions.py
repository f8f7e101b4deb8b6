"""Custom exceptions for the membership and statistics services."""

from __future__ import annotations

from fastapi import status

if hasattr(status, "HTTP_422_UNPROCESSABLE_CONTENT"):
	_HTTP_422 = status.HTTP_422_UNPROCESSABLE_CONTENT
else:  # pragma: no cover - fallback for older Starlette builds
	_HTTP_422 = status.HTTP_422_UNPROCESSABLE_ENTITY


class MembershipError(Exception):
	"""Base class for membership related errors."""

	status_code: int = status.HTTP_400_BAD_REQUEST
	detail: str = "membership_error"

	def __init__(self, detail: str | None = None) -> None:
		super().__init__(detail or self.detail)
		if detail:
			self.detail = detail


class UnauthenticatedError(MembershipError):
	"""Raised when the caller has no identity."""

	status_code = status.HTTP_401_UNAUTHORIZED
	detail = "unauthenticated"


class InvalidArgumentError(MembershipError):
	"""Raised for malformed or missing input, before any store read."""

	status_code = _HTTP_422
	detail = "invalid_argument"


class NotFoundError(MembershipError):
	"""Raised for unresolved codes, groups, slots or users."""

	status_code = status.HTTP_404_NOT_FOUND
	detail = "not_found"


class PermissionDeniedError(MembershipError):
	"""Raised when role or claim checks fail."""

	status_code = status.HTTP_403_FORBIDDEN
	detail = "permission_denied"


class InternalError(MembershipError):
	"""Raised for unexpected store failures, including exhausted retries."""

	status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
	detail = "internal"
