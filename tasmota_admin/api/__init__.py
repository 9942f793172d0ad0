from fastapi import APIRouter
from tasmota_admin.api.auth import router as auth_router
from tasmota_admin.api.categories import router as categories_router
from tasmota_admin.api.devices import router as devices_router
from tasmota_admin.api.storage import router as storage_router
from tasmota_admin.api.workflows import router as workflows_router

api_router = APIRouter()

# Include all the routers
api_router.include_router(auth_router)
api_router.include_router(devices_router)
api_router.include_router(categories_router)
api_router.include_router(storage_router)
api_router.include_router(workflows_router)
