"""Board API endpoints.

This module provides a FastAPI router exposing moves, the board view, the
task/status CRUD needed to seed a project, manual rebalancing, and the
activity log.  Engine errors propagate as :class:`MoveError` and are turned
into JSON responses by the handler registered in ``create_app``.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Header, HTTPException, Query
from loguru import logger
from pydantic import BaseModel, Field

from ..constants import ACTOR_HEADER
from ..ordering.model import intent_from_request


# ---------------------------------------------------------------------------
# Pydantic request / response models
# ---------------------------------------------------------------------------

class MoveTaskRequest(BaseModel):
    """Flat move request; omit ``target_parent_id`` to keep the current parent."""

    target_status_id: Optional[str] = None
    target_parent_id: Optional[str] = None
    before_task_id: Optional[str] = None
    is_same_group_reorder: bool = False


class CreateTaskRequest(BaseModel):
    title: str = Field(min_length=1)
    status_id: Optional[str] = None
    parent_id: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class CreateStatusRequest(BaseModel):
    name: str = Field(min_length=1)
    is_completed_status: bool = False
    order: Optional[int] = None


class RebalanceRequest(BaseModel):
    status_id: Optional[str] = None
    parent_id: Optional[str] = None
    force: bool = True


class TaskResponse(BaseModel):
    task: dict[str, Any]


class TaskListResponse(BaseModel):
    tasks: list[dict[str, Any]]
    total: int


class StatusResponse(BaseModel):
    status: dict[str, Any]


class StatusListResponse(BaseModel):
    statuses: list[dict[str, Any]]


class BoardResponse(BaseModel):
    board: dict[str, Any]
    columns: dict[str, list[dict[str, Any]]]


class RebalanceResponse(BaseModel):
    changed: list[dict[str, Any]]
    total: int


class ActivityResponse(BaseModel):
    activity: list[dict[str, Any]]


# ---------------------------------------------------------------------------
# Router factory
# ---------------------------------------------------------------------------

def create_board_router(get_orchestrator: Any) -> APIRouter:
    """Create the board API router.

    Parameters
    ----------
    get_orchestrator:
        A callable ``(project_dir_param: str | None) -> MoveOrchestrator``
        that resolves the orchestrator for the current request.
    """
    router = APIRouter(prefix="/api", tags=["board"])

    # ------------------------------------------------------------------
    # Moves
    # ------------------------------------------------------------------

    @router.post("/tasks/{task_id}/move", response_model=TaskResponse)
    async def move_task(
        task_id: str,
        body: MoveTaskRequest,
        project_dir: Optional[str] = Query(None),
        actor: Optional[str] = Header(None, alias=ACTOR_HEADER),
    ) -> TaskResponse:
        orchestrator = get_orchestrator(project_dir)
        intent = intent_from_request(
            target_status_id=body.target_status_id,
            target_parent_id=body.target_parent_id,
            before_task_id=body.before_task_id,
            is_same_group_reorder=body.is_same_group_reorder,
            parent_specified="target_parent_id" in body.model_fields_set,
        )
        task = orchestrator.move(task_id, intent, actor=actor or "anonymous")
        return TaskResponse(task=task.to_dict())

    # ------------------------------------------------------------------
    # Board
    # ------------------------------------------------------------------

    @router.get("/projects/{project_id}/board", response_model=BoardResponse)
    async def get_board(
        project_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> BoardResponse:
        board = get_orchestrator(project_dir).board(project_id)
        columns = {sid: [t.to_dict() for t in tasks] for sid, tasks in board.columns().items()}
        return BoardResponse(board=board.to_dict(), columns=columns)

    @router.post("/projects/{project_id}/rebalance", response_model=RebalanceResponse)
    async def rebalance_group(
        project_id: str,
        body: RebalanceRequest,
        project_dir: Optional[str] = Query(None),
    ) -> RebalanceResponse:
        orchestrator = get_orchestrator(project_dir)
        changed = orchestrator.rebalance_group(project_id, body.status_id, body.parent_id, force=body.force)
        logger.info("Rebalanced {} tasks in project {}", len(changed), project_id)
        data = [t.to_dict() for t in changed]
        return RebalanceResponse(changed=data, total=len(data))

    @router.get("/projects/{project_id}/activity", response_model=ActivityResponse)
    async def get_activity(
        project_id: str,
        task_id: Optional[str] = Query(None),
        limit: int = Query(50, ge=1, le=1000),
        project_dir: Optional[str] = Query(None),
    ) -> ActivityResponse:
        orchestrator = get_orchestrator(project_dir)
        rows = orchestrator.recent_activity(project_id=project_id, task_id=task_id, limit=limit)
        return ActivityResponse(activity=rows)

    # ------------------------------------------------------------------
    # Statuses
    # ------------------------------------------------------------------

    @router.get("/projects/{project_id}/statuses", response_model=StatusListResponse)
    async def list_statuses(
        project_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> StatusListResponse:
        statuses = get_orchestrator(project_dir).list_statuses(project_id)
        return StatusListResponse(statuses=[s.to_dict() for s in statuses])

    @router.post("/projects/{project_id}/statuses", response_model=StatusResponse, status_code=201)
    async def create_status(
        project_id: str,
        body: CreateStatusRequest,
        project_dir: Optional[str] = Query(None),
    ) -> StatusResponse:
        status = get_orchestrator(project_dir).create_status(
            project_id,
            body.name,
            is_completed_status=body.is_completed_status,
            order=body.order,
        )
        return StatusResponse(status=status.to_dict())

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    @router.get("/projects/{project_id}/tasks", response_model=TaskListResponse)
    async def list_tasks(
        project_id: str,
        status_id: Optional[str] = Query(None),
        parent_id: Optional[str] = Query(None),
        project_dir: Optional[str] = Query(None),
    ) -> TaskListResponse:
        tasks = get_orchestrator(project_dir).list_tasks(project_id, status_id=status_id, parent_id=parent_id)
        data = [t.to_dict() for t in tasks]
        return TaskListResponse(tasks=data, total=len(data))

    @router.post("/projects/{project_id}/tasks", response_model=TaskResponse, status_code=201)
    async def create_task(
        project_id: str,
        body: CreateTaskRequest,
        project_dir: Optional[str] = Query(None),
        actor: Optional[str] = Header(None, alias=ACTOR_HEADER),
    ) -> TaskResponse:
        task = get_orchestrator(project_dir).create_task(
            project_id,
            body.title,
            status_id=body.status_id,
            parent_id=body.parent_id,
            metadata=body.metadata,
            actor=actor or "anonymous",
        )
        return TaskResponse(task=task.to_dict())

    @router.get("/tasks/{task_id}", response_model=TaskResponse)
    async def get_task(
        task_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> TaskResponse:
        task = get_orchestrator(project_dir).get_task(task_id)
        if task is None:
            raise HTTPException(status_code=404, detail=f"Task {task_id} not found")
        return TaskResponse(task=task.to_dict())

    @router.delete("/tasks/{task_id}")
    async def delete_task(
        task_id: str,
        project_dir: Optional[str] = Query(None),
        actor: Optional[str] = Header(None, alias=ACTOR_HEADER),
    ) -> dict[str, str]:
        if not get_orchestrator(project_dir).delete_task(task_id, actor=actor or "anonymous"):
            raise HTTPException(status_code=404, detail=f"Task {task_id} not found")
        return {"status": "deleted"}

    return router
