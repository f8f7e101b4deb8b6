"""FastAPI routers for the groups domain."""

from __future__ import annotations

from fastapi import APIRouter

from ensemble.groups.api import account, groups, members, services, stats

router = APIRouter(prefix="/api/groups/v1")

router.include_router(groups.router)
router.include_router(members.router)
router.include_router(account.router)
router.include_router(services.router)
router.include_router(stats.router)

__all__ = ["router"]
