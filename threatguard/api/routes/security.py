"""Security Decision Endpoints"""

from fastapi import APIRouter, Depends

from threatguard.api.dependencies import get_core
from threatguard.core import SecurityCore
from threatguard.models.security import RequestContext, SecurityDecision, TenantSecurityPolicy

router = APIRouter()


@router.post("/evaluate", response_model=SecurityDecision)
async def evaluate_request(context: RequestContext, core: SecurityCore = Depends(get_core)):
    """
    Evaluate an inbound unit of work

    Returns the allow / flag / block decision without raising.
    """
    return await core.evaluate(context)


@router.post("/enforce", response_model=SecurityDecision)
async def enforce_request(context: RequestContext, core: SecurityCore = Depends(get_core)):
    """
    Evaluate and reject blocked work

    Blocked work answers 403 (429 when rate limited) with the reason,
    threat ids and risk score.
    """
    return await core.enforce(context)


@router.put("/policies", response_model=TenantSecurityPolicy)
async def set_tenant_policy(policy: TenantSecurityPolicy, core: SecurityCore = Depends(get_core)):
    core.gate.set_tenant_policy(policy)
    return policy
