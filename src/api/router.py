"""
API router — aggregates all route modules.
"""
from fastapi import APIRouter
from src.api.funnel import router as funnel_router
from src.api.otp import router as otp_router
from src.api.health import router as health_router

api_router = APIRouter()
api_router.include_router(funnel_router)
api_router.include_router(otp_router)
api_router.include_router(health_router)
