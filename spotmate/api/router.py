from fastapi import APIRouter

from spotmate.api.routes import activity, feedback, nearby, presence, profile

api_router = APIRouter(prefix="/v1")

api_router.include_router(profile.router)
api_router.include_router(presence.router, prefix="/presence", tags=["presence"])
api_router.include_router(activity.router)
api_router.include_router(nearby.router)
api_router.include_router(feedback.router)
