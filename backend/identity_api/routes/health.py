from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

router = APIRouter(tags=["health"])


@router.get("/hc", response_class=PlainTextResponse)
def health_check() -> str:
    return "OK"
