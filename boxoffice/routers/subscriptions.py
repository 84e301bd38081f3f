"""Subscription contract status updates."""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, status

from boxoffice.core.container import ServiceContainer
from boxoffice.deps import get_container, require_flow_secret
from boxoffice.schemas import ContractUpdateRequest, ContractUpdateResponse
from boxoffice.services.removal.imports import contract_id_from_handle, normalize_id

router = APIRouter(prefix="/subscription-contracts", tags=["subscriptions"])
logger = structlog.get_logger(__name__)

ACTIVE = "ACTIVE"
INACTIVE = ("PAUSED", "CANCELLED")


@router.post("/updated", response_model=ContractUpdateResponse)
async def contract_updated(
    body: ContractUpdateRequest,
    x_shopify_shop_domain: Optional[str] = Header(default=None),
    _: bool = Depends(require_flow_secret),
    container: ServiceContainer = Depends(get_container),
) -> ContractUpdateResponse:
    """
    Apply a contract status change.

    ACTIVE records the contract and skips its pending removal for the
    current period. PAUSED/CANCELLED queues a single-contract removal
    unless the customer still has another active contract.
    """
    shop = normalize_id(body.shop) or normalize_id(x_shopify_shop_domain)
    if not shop:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="shop_required")

    contract_id = normalize_id(body.contract_id) or contract_id_from_handle(body.handle)
    if not contract_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="contract_id_required"
        )

    customer_id = normalize_id(body.customer_id)
    if not customer_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="customer_id_required"
        )
    line_variant_id = normalize_id(body.line_variant_id)
    contract_status = body.status.strip().upper()

    if contract_status == ACTIVE:
        details = await container.contracts.on_contract_active(
            shop, contract_id, customer_id, line_variant_id
        )
    elif contract_status in INACTIVE:
        details = await container.contracts.on_contract_cancelled(
            shop, contract_id, customer_id, line_variant_id, status=contract_status
        )
    else:
        logger.info("contract_status_ignored", tenant=shop, status=contract_status)
        details = {"status": "ignored"}

    return ContractUpdateResponse(status=contract_status, details=details)
