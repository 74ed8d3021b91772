from __future__ import annotations

from typing import Dict, List

from fastapi import APIRouter, Depends, HTTPException, Request, status

from homie_agent.config import Settings, get_settings
from homie_agent.device import HomieDevice

router = APIRouter(prefix="/v1")


def _device(request: Request) -> HomieDevice:
    device: HomieDevice | None = getattr(request.app.state, "device", None)
    if device is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Device not started")
    return device


@router.get("/status")
async def status_endpoint(request: Request, settings: Settings = Depends(get_settings)) -> Dict[str, object]:
    device = _device(request)
    body = device.snapshot()
    body["broker_url"] = device.configuration.broker_url
    body["service_name"] = settings.service_name
    return body


@router.get("/nodes")
async def list_nodes(request: Request) -> List[Dict[str, str]]:
    device = _device(request)
    return [{"name": node.name, "type": node.type} for node in device.nodes]
