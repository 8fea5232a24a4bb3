"""V1 API router aggregation."""

from fastapi import APIRouter

from crmgate.api.v1.auth import router as auth_router
from crmgate.api.v1.leads import router as leads_router
from crmgate.api.v1.tenants import router as tenants_router
from crmgate.api.v1.usage import router as usage_router
from crmgate.api.v1.users import router as users_router

v1_router = APIRouter(prefix="/v1")
v1_router.include_router(tenants_router)
v1_router.include_router(auth_router)
v1_router.include_router(users_router)
v1_router.include_router(leads_router)
v1_router.include_router(usage_router)
