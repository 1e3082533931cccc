from fastapi import APIRouter

from relay.api.v1.generation import router as generation_router

api_v1_router = APIRouter()
api_v1_router.include_router(generation_router)
