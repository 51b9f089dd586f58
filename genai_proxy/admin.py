"""Operational endpoints, kept under a prefix the upstream API does not use."""

from typing import Dict

from fastapi import APIRouter, Request

from genai_proxy.routing import resolve_base_url

admin_router = APIRouter(prefix="/_proxy", tags=["admin"])


@admin_router.get("/health")
async def health_check(request: Request) -> Dict[str, object]:
    config = request.app.state.config
    return {
        "status": "healthy",
        "virtual_tokens": len(config.keys),
    }


@admin_router.get("/status")
async def rotation_status(request: Request) -> Dict[str, object]:
    """Rotation state per configured virtual token, with tokens masked."""
    config = request.app.state.config
    rotation = request.app.state.rotation
    status = rotation.get_status(config)
    status["upstream"] = resolve_base_url(config)
    status["telemetry_relay"] = bool(config.helicone_api_key)
    return status
