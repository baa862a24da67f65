from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from db.config import get_mysql_session
from models.schemas import BillingPlan, PlanCreateRequest, PlanUpdateRequest
from services.plan_service import PlanService

router = APIRouter(prefix="/plans", tags=["Plans"])


def get_plan_service(session: Session = Depends(get_mysql_session)) -> PlanService:
    return PlanService(session)


@router.post(
    "/",
    response_model=BillingPlan,
    status_code=status.HTTP_201_CREATED,
    summary="Create billing plan",
    description="Creates a billing plan with its resources and products"
)
def create_plan(
    request: PlanCreateRequest,
    service: PlanService = Depends(get_plan_service)
):
    return service.create_plan(request)


@router.get(
    "/",
    response_model=List[BillingPlan],
    summary="List billing plans"
)
def list_plans(
    service: PlanService = Depends(get_plan_service)
):
    return service.list_plans()


@router.get(
    "/{plan_uuid}",
    response_model=BillingPlan,
    summary="Get billing plan"
)
def get_plan(
    plan_uuid: str,
    service: PlanService = Depends(get_plan_service)
):
    result = service.get_plan(plan_uuid)
    if not result:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Billing plan not found"
        )
    return result


@router.put(
    "/{plan_uuid}",
    response_model=BillingPlan,
    summary="Update billing plan",
    description="Replaces the given fields of a billing plan"
)
def update_plan(
    plan_uuid: str,
    request: PlanUpdateRequest,
    service: PlanService = Depends(get_plan_service)
):
    result = service.update_plan(plan_uuid, request)
    if not result:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Billing plan not found"
        )
    return result


@router.delete(
    "/{plan_uuid}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete billing plan"
)
def delete_plan(
    plan_uuid: str,
    service: PlanService = Depends(get_plan_service)
):
    if not service.delete_plan(plan_uuid):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Billing plan not found"
        )
