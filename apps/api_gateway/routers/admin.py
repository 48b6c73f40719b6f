"""
Service-only admin endpoints.

Назначение:
- ручной запуск периодических задач (через тот же guard, что и по расписанию)
- состояние планировщика
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from apps.api_gateway.deps import service_auth_dep
from digest_orchestrator.common.security import AuthContext
from digest_orchestrator.jobs.scheduler import MAINTENANCE_TASK, SUMMARY_TASK, Scheduler

router = APIRouter()


class TaskRunResponse(BaseModel):
    task: str
    accepted: bool
    reason: str | None = None


def _scheduler(request: Request) -> Scheduler:
    return request.app.state.scheduler


def _run(request: Request, name: str) -> TaskRunResponse:
    accepted = _scheduler(request).run_now(name)
    return TaskRunResponse(task=name, accepted=accepted, reason=None if accepted else "in_flight")


@router.post("/admin/maintenance/run", response_model=TaskRunResponse)
def run_maintenance(
    request: Request,
    _: AuthContext = Depends(service_auth_dep),
) -> TaskRunResponse:
    return _run(request, MAINTENANCE_TASK)


@router.post("/admin/summary/run", response_model=TaskRunResponse)
def run_summary(
    request: Request,
    _: AuthContext = Depends(service_auth_dep),
) -> TaskRunResponse:
    return _run(request, SUMMARY_TASK)


@router.get("/admin/scheduler")
def scheduler_status(
    request: Request,
    _: AuthContext = Depends(service_auth_dep),
) -> dict[str, Any]:
    return {"tasks": _scheduler(request).status()}
