"""FastAPI host that runs the Homie device and exposes its status."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from homie_agent.config import Settings, get_settings
from homie_agent.device import HomieDevice
from homie_agent.metrics import CpuLoadProvider, CpuTemperatureProvider, MetricProvider
from homie_agent.observability import configure_observability
from homie_agent.routers import root as root_router
from homie_agent.routers import status as status_router
from homie_agent.transport import PahoTransport, Transport

logger = logging.getLogger(__name__)


def build_transport(settings: Settings) -> Transport:
    return PahoTransport(
        username=settings.mqtt_username,
        password=settings.mqtt_password.get_secret_value() if settings.mqtt_password else None,
        keepalive=settings.mqtt_keepalive,
        qos=settings.mqtt_qos,
        connect_timeout_seconds=settings.mqtt_connect_timeout_seconds,
    )


def build_device(settings: Settings, transport: Transport) -> HomieDevice:
    cpu_temperature: MetricProvider | None = CpuTemperatureProvider() if settings.report_cpu_temperature else None
    cpu_load: MetricProvider | None = CpuLoadProvider() if settings.report_cpu_load else None
    device = HomieDevice(
        settings.device,
        settings.firmware_name,
        settings.firmware_version,
        transport,
        cpu_temperature=cpu_temperature,
        cpu_load=cpu_load,
    )
    for node in settings.nodes:
        device.create_node(node.name, node.type)
    return device


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    device = build_device(settings, build_transport(settings))
    device.setup()
    app.state.device = device
    logger.info(
        "Homie agent started for %s/%s (%d nodes)",
        settings.device.base_topic,
        settings.device.device_id,
        len(device.nodes),
    )
    try:
        yield
    finally:
        app.state.device = None
        # Joining the loop thread can take up to one retry delay.
        await asyncio.to_thread(device.shutdown)


settings = get_settings()
app = FastAPI(title="Homie Agent", lifespan=lifespan)
configure_observability(app, service_name=settings.service_name, log_level=settings.log_level)

app.include_router(root_router.router)
app.include_router(status_router.router)


def run() -> None:  # pragma: no cover
    import uvicorn

    uvicorn.run("homie_agent.main:app", host=settings.http_host, port=settings.http_port)


if __name__ == "__main__":  # pragma: no cover
    run()
