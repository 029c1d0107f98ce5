"""Routes mounted for every role."""

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
def health(request: Request) -> dict:
    return {"status": "ok", "service": "leasely", "role": request.app.state.role}
