"""Greeting endpoints."""

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

router = APIRouter(prefix="/greet", tags=["Greet"])


@router.get("", response_class=PlainTextResponse)
@router.get("/{name}", response_class=PlainTextResponse)
async def greet(name: str = "World") -> str:
    return f"Hello {name}"
