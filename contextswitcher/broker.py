"""HTTP broker for inspecting and driving the ContextSwitcher gateway."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse

from contextswitcher import __version__
from contextswitcher.gateway import Gateway, GatewaySnapshot
from contextswitcher.router import CapabilityNotFoundError, WorkerUnavailableError
from contextswitcher.schemas import (
    CallRequest,
    CatalogResponse,
    ErrorResponse,
    HealthResponse,
    RefreshResponse,
    SwitchRequest,
)

logger = logging.getLogger(__name__)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)


# Global gateway instance
_gateway_instance: Gateway | None = None


def get_gateway(config_source: Path | str | None = None) -> Gateway:
    """Get or create the global gateway instance.

    Args:
        config_source: Optional configuration file, used on first creation

    Returns:
        Gateway instance
    """
    global _gateway_instance
    if _gateway_instance is None:
        _gateway_instance = Gateway(config_source=config_source)
    return _gateway_instance


def set_gateway(gateway: Gateway | None) -> None:
    """Replace the global gateway instance."""
    global _gateway_instance
    _gateway_instance = gateway


@asynccontextmanager
async def lifespan(app: FastAPI):
    gateway = get_gateway()
    await gateway.refresh()
    try:
        yield
    finally:
        await gateway.shutdown()


app = FastAPI(
    title="ContextSwitcher Broker",
    description="HTTP broker for the ContextSwitcher MCP gateway",
    version=__version__,
    lifespan=lifespan,
)


def _refresh_response(snapshot: GatewaySnapshot) -> RefreshResponse:
    return RefreshResponse(
        snapshot_version=snapshot.version,
        workers=sorted(snapshot.workers),
        tool_count=snapshot.worker_tool_count,
        resource_count=len(snapshot.resources),
        failed_workers=snapshot.failed_workers,
    )


# --- HTTP Endpoints ---


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Report gateway status from the current snapshot."""
    gateway = get_gateway()
    snapshot = gateway.snapshot

    return HealthResponse(
        gateway="degraded" if snapshot.failed_workers else "healthy",
        snapshot_version=snapshot.version,
        worker_count=len(gateway.launcher.live),
        tool_count=snapshot.worker_tool_count,
        active_source=str(snapshot.source) if snapshot.source else None,
        switching_enabled=snapshot.settings.switching_enabled,
    )


@app.get("/catalog", response_model=CatalogResponse)
async def catalog() -> CatalogResponse:
    """Return the published catalog without re-aggregating."""
    snapshot = get_gateway().snapshot
    return CatalogResponse(
        snapshot_version=snapshot.version,
        tools=[t.model_dump(mode="json", exclude_none=True) for t in snapshot.tools],
        resources=[r.model_dump(mode="json", exclude_none=True) for r in snapshot.resources],
    )


@app.post("/refresh", response_model=RefreshResponse)
async def refresh() -> RefreshResponse:
    """Run a full aggregation pass."""
    snapshot = await get_gateway().refresh()
    return _refresh_response(snapshot)


@app.post("/call")
async def call(request: CallRequest) -> dict:
    """Route a capability call.

    Args:
        request: CallRequest with the capability name and arguments

    Returns:
        The tool call result as JSON
    """
    logger.info(f"Received call request: name={request.name}")
    try:
        result = await get_gateway().call(request.name, request.arguments)
    except CapabilityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except WorkerUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))

    return result.model_dump(mode="json", by_alias=True, exclude_none=True)


@app.post("/context_switch")
async def context_switch(request: SwitchRequest) -> dict:
    """Switch the gateway to another configuration file."""
    result = await get_gateway().switcher.switch(request.config_source)
    return result.to_call_result().model_dump(mode="json", by_alias=True, exclude_none=True)


@app.exception_handler(Exception)
async def generic_exception_handler(request, exc: Exception) -> JSONResponse:
    """Handle uncaught exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            detail=str(exc),
            error_code="INTERNAL_ERROR",
        ).model_dump(),
    )
