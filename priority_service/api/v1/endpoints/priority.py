# priority_service/api/v1/endpoints/priority.py
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request

from priority_service.api.deps import get_priority_engine
from priority_service.core.exceptions import PrioritizationException
from priority_service.core.security import get_current_user
from priority_service.models.schemas import (
    AuditTrailResponse, ModelHistoryResponse, ModelInfoResponse, PrioritizedTasksResponse,
    RecordInteractionRequest, RecordInteractionResponse, TrainingStatus, TrainModelResponse
)
from priority_service.services.priority_engine import PriorityEngine

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.get("/tasks", response_model=PrioritizedTasksResponse)
async def get_prioritized_tasks(
    current_user: Dict[str, Any] = Depends(get_current_user),
    engine: PriorityEngine = Depends(get_priority_engine)
):
    """
    Rank the caller's open tasks across every task source
    """
    try:
        result = await engine.get_prioritized_tasks(current_user["id"])
        return PrioritizedTasksResponse(
            strategy=result.strategy,
            model_version=result.model_version,
            tasks=result.tasks,
            degraded_sources=result.degraded_sources,
        )

    except PrioritizationException:
        raise
    except Exception as e:
        logger.error("Error prioritizing tasks", user_id=current_user["id"], error=str(e))
        raise HTTPException(status_code=500, detail="Failed to get prioritized tasks")


@router.post("/interaction", response_model=RecordInteractionResponse)
async def record_interaction(
    request: RecordInteractionRequest,
    current_user: Dict[str, Any] = Depends(get_current_user),
    engine: PriorityEngine = Depends(get_priority_engine)
):
    """
    Record an operator action on a task for learning
    """
    try:
        result = await engine.record_interaction(current_user["id"], request)
        return RecordInteractionResponse(
            session_id=result.interaction.session_id,
            interaction_count=result.interaction_count,
            training_triggered=result.training_triggered,
        )

    except PrioritizationException:
        raise
    except Exception as e:
        logger.error("Error recording interaction", user_id=current_user["id"], error=str(e))
        raise HTTPException(status_code=500, detail="Failed to record interaction")


@router.get("/model", response_model=ModelInfoResponse)
async def get_model_info(
    current_user: Dict[str, Any] = Depends(get_current_user),
    engine: PriorityEngine = Depends(get_priority_engine)
):
    """
    Describe the caller's active priority model
    """
    try:
        return await engine.get_model_info(current_user["id"])

    except PrioritizationException:
        raise
    except Exception as e:
        logger.error("Error getting model info", user_id=current_user["id"], error=str(e))
        raise HTTPException(status_code=500, detail="Failed to get model info")


@router.post("/train", response_model=TrainModelResponse)
async def train_model(
    current_user: Dict[str, Any] = Depends(get_current_user),
    engine: PriorityEngine = Depends(get_priority_engine)
):
    """
    Force a training run for the caller
    """
    try:
        result = await engine.train_model(current_user["id"])

    except PrioritizationException:
        raise
    except Exception as e:
        logger.error("Error training model", user_id=current_user["id"], error=str(e))
        raise HTTPException(status_code=500, detail="Failed to train model")

    if result.status == TrainingStatus.SUPERSEDED:
        message = "A concurrent training run already produced a newer model"
    else:
        message = "Model trained successfully"

    return TrainModelResponse(
        message=message,
        model_version=result.model.model_version if result.model else 0,
    )


@router.get("/model/history", response_model=ModelHistoryResponse)
async def get_model_history(
    current_user: Dict[str, Any] = Depends(get_current_user),
    engine: PriorityEngine = Depends(get_priority_engine)
):
    """
    All model versions for the caller, newest first
    """
    try:
        return ModelHistoryResponse(models=await engine.list_models(current_user["id"]))

    except PrioritizationException:
        raise
    except Exception as e:
        logger.error("Error listing models", user_id=current_user["id"], error=str(e))
        raise HTTPException(status_code=500, detail="Failed to list models")


@router.get("/audit", response_model=AuditTrailResponse)
async def get_audit_trail(
    request: Request,
    limit: Optional[int] = Query(None, ge=1, le=500),
    current_user: Dict[str, Any] = Depends(get_current_user),
    engine: PriorityEngine = Depends(get_priority_engine)
):
    """
    The caller's most recent scoring decisions
    """
    limit = limit or request.app.state.settings.audit_page_size
    try:
        return AuditTrailResponse(entries=await engine.audit_trail(current_user["id"], limit))

    except PrioritizationException:
        raise
    except Exception as e:
        logger.error("Error listing audit trail", user_id=current_user["id"], error=str(e))
        raise HTTPException(status_code=500, detail="Failed to get audit trail")
