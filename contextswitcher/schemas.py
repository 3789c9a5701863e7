"""Pydantic schemas for ContextSwitcher request/response contracts."""

from __future__ import annotations

from typing import Any, Literal

from mcp.types import CallToolResult, TextContent
from pydantic import BaseModel, ConfigDict, Field


# --- Context Switch ---


class SwitchRequest(BaseModel):
    """Arguments of the context_switch capability."""

    model_config = ConfigDict(populate_by_name=True)

    config_source: str = Field(
        ...,
        alias="configSource",
        min_length=1,
        description="Path of the configuration file to switch to",
    )


class SwitchMetadata(BaseModel):
    """Outcome flags of a context switch."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    tool_count: int | None = Field(default=None, alias="toolCount")


class SwitchResult(BaseModel):
    """Result of a context switch request."""

    message: str
    metadata: SwitchMetadata

    @property
    def success(self) -> bool:
        return self.metadata.success

    def to_call_result(self) -> CallToolResult:
        """Render as a tool call result: text content plus metadata."""
        return CallToolResult.model_validate({
            "content": [TextContent(type="text", text=self.message)],
            "isError": False,
            "metadata": self.metadata.model_dump(by_alias=True, exclude_none=True),
        })


# --- HTTP Broker ---


class CallRequest(BaseModel):
    """Request to invoke a capability through the gateway."""

    name: str = Field(..., min_length=1)
    arguments: dict[str, Any] | None = None


class RefreshResponse(BaseModel):
    """Summary of a completed aggregation pass."""

    snapshot_version: int
    workers: list[str]
    tool_count: int
    resource_count: int
    failed_workers: list[str] = Field(default_factory=list)


class CatalogResponse(BaseModel):
    """Published catalog of the current snapshot."""

    snapshot_version: int
    tools: list[dict[str, Any]]
    resources: list[dict[str, Any]]


class ErrorResponse(BaseModel):
    """Error response for failed requests."""

    detail: str
    error_code: str | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    gateway: Literal["healthy", "degraded"] = "healthy"
    snapshot_version: int = 0
    worker_count: int = 0
    tool_count: int = 0
    active_source: str | None = None
    switching_enabled: bool = True
