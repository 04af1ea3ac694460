"""Task submission and queue inspection endpoints.

Endpoints:
- POST /tasks        — queue a batch of raw questions for enrichment
- GET  /queue/stats  — number of queue entries per status

Submission only writes a ``ready`` queue row; enrichment happens later in the
worker pool, so the response carries the task id rather than any result.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from qbank.api.deps import get_queue_store
from qbank.errors import StoreError
from qbank.processor.task import submit
from qbank.queue.store import QueueStore

logger = logging.getLogger(__name__)

tasks_router = APIRouter(tags=["tasks"])


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class CreateTaskRequest(BaseModel):
    """Request body for POST /tasks."""

    raw_questions: str = Field(min_length=1, description="One or more raw questions, free-form")
    source: str | None = None
    metadata: dict[str, Any] | None = None


class TaskData(BaseModel):
    task_id: str
    source: str
    created_at: str


class CreateTaskResponse(BaseModel):
    """Response body for POST /tasks."""

    message: str
    task_id: str
    data: TaskData


class QueueStatsResponse(BaseModel):
    """Response body for GET /queue/stats."""

    counts: dict[str, int]
    total: int


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@tasks_router.post(
    "/tasks",
    response_model=CreateTaskResponse,
    status_code=status.HTTP_201_CREATED,
    operation_id="create_task",
    summary="Queue raw questions for enrichment",
)
async def create_task(
    body: CreateTaskRequest,
    store: QueueStore = Depends(get_queue_store),
) -> CreateTaskResponse:
    if not body.raw_questions.strip():
        raise HTTPException(status_code=400, detail="raw_questions must not be blank")

    try:
        task = await submit(store, body.raw_questions, body.source, body.metadata)
    except StoreError:
        logger.exception("Task submission failed")
        raise HTTPException(status_code=500, detail="failed to create task")

    return CreateTaskResponse(
        message="task created successfully",
        task_id=task.task_id,
        data=TaskData(
            task_id=task.task_id,
            source=task.source,
            created_at=task.created_at.isoformat(),
        ),
    )


@tasks_router.get(
    "/queue/stats",
    response_model=QueueStatsResponse,
    operation_id="queue_stats",
    summary="Queue entry counts per status",
)
async def queue_stats(store: QueueStore = Depends(get_queue_store)) -> QueueStatsResponse:
    try:
        counts = await store.count_by_status()
    except StoreError:
        logger.exception("Queue stats query failed")
        raise HTTPException(status_code=500, detail="failed to read queue stats")
    return QueueStatsResponse(counts=counts, total=sum(counts.values()))
