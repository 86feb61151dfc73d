from fastapi import APIRouter

from rentai.api.v1.ai_gateway import router as ai_gateway_router

api_v1_router = APIRouter(prefix="/api/v1")
api_v1_router.include_router(ai_gateway_router)
