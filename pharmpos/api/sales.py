import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session

from pharmpos.api.auth import Identity, get_identity, request_meta
from pharmpos.database import get_db
from pharmpos.schemas.sale import SaleCreate
from pharmpos.services import sales_service
from pharmpos.services.audit_service import log_audit_event

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Sales"])


def _validation_message(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        where = ".".join(str(p) for p in err["loc"])
        parts.append(f"{where}: {err['msg']}" if where else err["msg"])
    return "; ".join(parts)


@router.post("/functions/complete-sale")
@router.post("/sales")
def complete_sale(
    request: Request,
    body: Any = Body(default=None),
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
):
    if not isinstance(body, dict):
        raise HTTPException(400, "Sale payload must be an object")
    try:
        data = SaleCreate.model_validate(body)
    except ValidationError as e:
        raise HTTPException(400, _validation_message(e))

    try:
        result = sales_service.complete_sale(db, data, snapshot=body)
    except Exception as e:
        logger.error("Complete sale failed: %s", e)
        raise HTTPException(500, str(e))

    actor = data.cashier_id or data.user_id or identity.id
    same_user = actor == identity.id
    log_audit_event(
        "SALE_CREATED",
        f"Sale {result.transaction_id} completed",
        user_id=actor,
        user_email=data.cashier_email or (identity.email if same_user else None),
        user_role=identity.role if same_user else None,
        resource_type="sales",
        resource_id=result.sale_id,
        details={
            "transactionId": result.transaction_id,
            "total": data.total,
            "subtotal": result.subtotal,
            "itemCount": len(data.items),
            "paymentMethod": data.payment_method,
        },
        **request_meta(request),
    )
    return result.model_dump(by_alias=True)
