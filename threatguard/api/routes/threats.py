"""Threat Detection Endpoints"""

from fastapi import APIRouter, Depends, HTTPException
from typing import List, Optional
from pydantic import BaseModel

from threatguard.api.dependencies import get_core
from threatguard.core import SecurityCore
from threatguard.models.audit import AuditEvent
from threatguard.models.threat import (
    SecurityDashboard,
    SecurityThreat,
    ThreatAnalysis,
    ThreatPattern
)
from threatguard.utils.errors import PatternNotFoundError

router = APIRouter()


class ToggleRequest(BaseModel):
    enabled: bool


class ResolveRequest(BaseModel):
    resolution: str
    resolved_by: Optional[str] = None


@router.get("/patterns", response_model=List[ThreatPattern])
async def list_patterns(core: SecurityCore = Depends(get_core)):
    return core.registry.list()


@router.get("/patterns/{pattern_id}", response_model=ThreatPattern)
async def get_pattern(pattern_id: str, core: SecurityCore = Depends(get_core)):
    pattern = core.registry.get(pattern_id)
    if pattern is None:
        raise PatternNotFoundError(pattern_id)
    return pattern


@router.post("/patterns", response_model=ThreatPattern, status_code=201)
async def add_pattern(pattern: ThreatPattern, core: SecurityCore = Depends(get_core)):
    """Add a threat pattern, replacing any pattern with the same id"""
    core.registry.add(pattern)
    return pattern


@router.delete("/patterns/{pattern_id}")
async def remove_pattern(pattern_id: str, core: SecurityCore = Depends(get_core)):
    if not core.registry.remove(pattern_id):
        raise PatternNotFoundError(pattern_id)
    return {"removed": pattern_id}


@router.post("/patterns/{pattern_id}/toggle", response_model=ThreatPattern)
async def toggle_pattern(
    pattern_id: str,
    request: ToggleRequest,
    core: SecurityCore = Depends(get_core)
):
    pattern = core.registry.set_enabled(pattern_id, request.enabled)
    if pattern is None:
        raise PatternNotFoundError(pattern_id)
    return pattern


@router.post("/analyze", response_model=List[ThreatAnalysis])
async def analyze_event(event: AuditEvent, core: SecurityCore = Depends(get_core)):
    """
    Analyze an event against enabled threat patterns

    The event is added to the user's history first.
    """
    return await core.analyze_event(event)


@router.get("/behavior/{tenant_id}/{user_id}", response_model=List[ThreatAnalysis])
async def analyze_behavior(tenant_id: str, user_id: str, core: SecurityCore = Depends(get_core)):
    return await core.perform_behavioral_analysis(user_id, tenant_id)


@router.get("/compromise/{tenant_id}/{user_id}")
async def check_compromise(tenant_id: str, user_id: str, core: SecurityCore = Depends(get_core)):
    compromised = await core.is_account_compromised(tenant_id, user_id)
    return {"tenant_id": tenant_id, "user_id": user_id, "compromised": compromised}


@router.get("/blacklist/{ip_address}")
async def check_blacklist(ip_address: str, core: SecurityCore = Depends(get_core)):
    blacklisted = await core.is_ip_blacklisted(ip_address)
    return {"ip_address": ip_address, "blacklisted": blacklisted}


@router.get("/active/{tenant_id}", response_model=List[SecurityThreat])
async def get_active_threats(tenant_id: str, core: SecurityCore = Depends(get_core)):
    return core.monitor.get_active_threats(tenant_id)


@router.post("/{threat_id}/resolve", response_model=SecurityThreat)
async def resolve_threat(
    threat_id: str,
    request: ResolveRequest,
    core: SecurityCore = Depends(get_core)
):
    threat = core.monitor.resolve_threat(threat_id, request.resolution, request.resolved_by)
    if threat is None:
        raise HTTPException(status_code=404, detail="Threat not found")
    return threat


@router.get("/dashboard/{tenant_id}", response_model=SecurityDashboard)
async def get_dashboard(tenant_id: str, core: SecurityCore = Depends(get_core)):
    """
    Tenant security dashboard

    Includes:
    - Rolling metrics and threat level
    - Active threats
    - Lockdown status
    """
    return core.monitor.get_dashboard(tenant_id)
