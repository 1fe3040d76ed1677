"""Liveness probe."""

from fastapi import APIRouter, Response

router = APIRouter(tags=["Health"])


@router.get("/health_check", response_class=Response, summary="Health check")
async def health_check() -> Response:
    """Always 200 with an empty body; no side effects."""
    return Response(status_code=200)
