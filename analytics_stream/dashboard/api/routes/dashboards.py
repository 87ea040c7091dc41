"""Dashboard snapshot and refresh endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from ...core.orchestrator import DashboardOrchestrator

router = APIRouter()

# Injected by server
_orchestrators: dict[str, DashboardOrchestrator] | None = None


def set_dependencies(orchestrators: dict[str, DashboardOrchestrator]) -> None:
    """Set dependencies for route handlers."""
    global _orchestrators
    _orchestrators = orchestrators


def _get(name: str) -> DashboardOrchestrator:
    if _orchestrators is None:
        raise HTTPException(status_code=503, detail="Dashboards not initialized")
    orchestrator = _orchestrators.get(name)
    if orchestrator is None:
        raise HTTPException(status_code=404, detail=f"Dashboard {name} not found")
    return orchestrator


class DashboardSummary(BaseModel):
    """Status line for one dashboard."""

    name: str
    ready_state: str
    attempts: int
    loading: bool
    updated_at: str | None = None
    error: dict[str, Any] | None = None


class RefreshResponse(BaseModel):
    """Outcome of a baseline refresh."""

    name: str
    applied: bool
    error: dict[str, Any] | None = None


@router.get("", response_model=list[DashboardSummary])
async def list_dashboards() -> list[DashboardSummary]:
    """List mounted dashboards with their connection status."""
    if _orchestrators is None:
        raise HTTPException(status_code=503, detail="Dashboards not initialized")

    summaries = []
    for name, orchestrator in _orchestrators.items():
        status = orchestrator.connection_status
        updated_at = orchestrator.state.updated_at
        summaries.append(
            DashboardSummary(
                name=name,
                ready_state=status.ready_state,
                attempts=status.attempts,
                loading=orchestrator.loading,
                updated_at=updated_at.isoformat() if updated_at else None,
                error=orchestrator.error.to_dict() if orchestrator.error else None,
            )
        )
    return summaries


@router.get("/{name}")
async def get_dashboard(name: str) -> dict[str, Any]:
    """Full snapshot: merged state, derived views and connection status."""
    return _get(name).snapshot()


@router.post("/{name}/refresh", response_model=RefreshResponse)
async def refresh_dashboard(name: str, range: str | None = None) -> RefreshResponse:
    """Re-fetch the baseline snapshot, optionally for a new time window."""
    orchestrator = _get(name)
    applied = await orchestrator.refresh(range)
    return RefreshResponse(
        name=name,
        applied=applied,
        error=orchestrator.error.to_dict() if orchestrator.error else None,
    )
