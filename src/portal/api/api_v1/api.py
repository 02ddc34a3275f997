from fastapi import APIRouter

from portal.api.api_v1.endpoints import admin_memberships, membership, session

api_router = APIRouter()
api_router.include_router(membership.router, prefix="/membership", tags=["membership"])
api_router.include_router(admin_memberships.router, prefix="/admin/memberships", tags=["admin"])
api_router.include_router(session.router, tags=["session"])
