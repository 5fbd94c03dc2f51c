from fastapi import APIRouter

from . import admins, auth, diseases, farmers, images, ml, users

api_router = APIRouter(prefix="/api/v1")

for module in (auth, users, farmers, admins, images, ml, diseases):
    api_router.include_router(module.router)
