import logging

from fastapi import APIRouter, HTTPException, status

from models.schemas import PreviewRequest, PreviewResponse
from services.accrual import (
    capacity_billing,
    capacity_zero_billing,
    static_billing,
    static_zero_billing,
)
from services.lazy import constant
from services.timeline import Record

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["Billing"])


@router.post(
    "/preview",
    response_model=PreviewResponse,
    summary="Preview accrual",
    description="Runs the accrual engine on a supplied timeline without publishing or persisting anything"
)
def preview(request: PreviewRequest):
    if request.resource is not None:
        res = request.resource
        amount = constant(request.amount)
        if res.period == 0:
            records, last = capacity_zero_billing(res, amount, request.instance, request.last, request.now)
        else:
            timeline = [Record(e.start, e.end, e.state) for e in request.timeline]
            records, last = capacity_billing(
                res, amount, timeline, request.instance, request.last, request.now
            )
    elif request.product is not None and request.product_key:
        if request.product.period == 0:
            records, last = static_zero_billing(
                request.product_key, request.product, request.instance, request.last
            )
        else:
            records, last = static_billing(
                request.product_key, request.product, request.instance, request.last, request.now
            )
    else:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Either resource or product_key with product is required"
        )

    logger.debug(f"Preview for {request.instance}: {len(records)} records, last={last}")
    return PreviewResponse(records=records, last=last)
