"""Liveness check: public, and touches neither the database nor the provider."""

from fastapi import APIRouter

from chatrelay.responses import success_response

router = APIRouter()


@router.get("/health")
async def health() -> dict:
    return success_response({"status": "ok"})
