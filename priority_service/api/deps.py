# priority_service/api/deps.py
from fastapi import HTTPException, Request, status

from priority_service.services.priority_engine import PriorityEngine


def get_priority_engine(request: Request) -> PriorityEngine:
    engine = getattr(request.app.state, "priority_engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Prioritization engine not initialized"
        )
    return engine
