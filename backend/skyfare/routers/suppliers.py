from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from typing import Optional
import logging

from ..core.security import get_current_user_email
from ..services.aggregator import Aggregator, get_aggregator
from ..services.registry import CandidateCriteria

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/suppliers", tags=["suppliers"])

class ProbeResponse(BaseModel):
    code: str
    success: bool
    message: str
    latency_ms: Optional[int] = None
    is_healthy: bool

@router.get("")
def list_suppliers(
    email: str = Depends(get_current_user_email),
    aggregator: Aggregator = Depends(get_aggregator),
):
    # jamais de credentials ici : SupplierConfig n'expose que has_credentials
    suppliers = aggregator.registry.list_candidates(CandidateCriteria(include_inactive=True))
    return {"suppliers": [s.to_dict() for s in suppliers]}

@router.post("/{code}/test", response_model=ProbeResponse)
async def test_supplier(
    code: str,
    email: str = Depends(get_current_user_email),
    aggregator: Aggregator = Depends(get_aggregator),
):
    result = await aggregator.probe(code)
    if result is None:
        raise HTTPException(status_code=404, detail="Fournisseur inconnu")
    logger.info("suppliers: test %s demandé par %s → %s", code, email, result.success)
    return ProbeResponse(code=code, is_healthy=result.success, **result.to_dict())
