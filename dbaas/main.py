from __future__ import annotations

from contextlib import asynccontextmanager
import logging

import uvicorn
from fastapi import FastAPI
from fastapi.responses import RedirectResponse

from dbaas.api import command, vms
from dbaas.api.utils import register_exception_handlers
from dbaas.logging_config import configure_logging
from dbaas.services.audit import build_audit_sink
from dbaas.services.orchestrator import ProvisioningOrchestrator
from dbaas.settings import get_settings

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    audit = build_audit_sink(settings)
    audit.open()
    app.state.orchestrator = ProvisioningOrchestrator.from_settings(settings, audit=audit)
    logger.info(
        "Control API ready (disk_mode=%s audit_sink=%s rollback_on_failure=%s)",
        settings.disk_mode,
        settings.audit_sink,
        settings.rollback_on_failure,
    )
    try:
        yield
    finally:
        audit.close()
        logger.info("Control API stopped")


app = FastAPI(
    title="dbaas",
    description="Provisions VirtualBox VMs and bootstraps MariaDB databases inside them",
    version="0.1.0",
    lifespan=lifespan,
)


@app.get("/", include_in_schema=False)
def root() -> RedirectResponse:
    """Redirect root URL to Swagger UI docs."""
    return RedirectResponse(url="/docs")


app.include_router(command.router)
app.include_router(vms.router)

register_exception_handlers(app)

if __name__ == "__main__":
    uvicorn.run("dbaas.main:app", host="0.0.0.0", port=8080, log_level="info")
