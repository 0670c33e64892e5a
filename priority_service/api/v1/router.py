# priority_service/api/v1/router.py
from fastapi import APIRouter

from priority_service.api.v1.endpoints import priority

api_router = APIRouter()

api_router.include_router(
    priority.router,
    prefix="/priority",
    tags=["Task Prioritization"]
)
