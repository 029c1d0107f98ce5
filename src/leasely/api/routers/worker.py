"""Worker/internal routes (APP_ROLE=worker)."""

from fastapi import APIRouter

from leasely.settlement.stages import STAGES

router = APIRouter()


@router.get("/tasks/health")
def tasks_health() -> dict:
    """Tasks subsystem health check."""
    return {"status": "ok", "subsystem": "tasks", "stages": list(STAGES)}
