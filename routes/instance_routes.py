from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from db.config import get_mysql_session
from models.schemas import (
    InstanceDataUpdateRequest,
    InstanceStatusUpdateRequest,
    InstancesGroup,
    InstancesGroupCreateRequest,
)
from services.instance_service import InstanceService
from services.plan_service import PlanService

router = APIRouter(tags=["Instances"])


def get_instance_service() -> InstanceService:
    return InstanceService()


def get_plan_service(session: Session = Depends(get_mysql_session)) -> PlanService:
    return PlanService(session)


@router.post(
    "/instances-groups",
    response_model=dict,
    status_code=status.HTTP_201_CREATED,
    summary="Create instances group",
    description="Registers an instances group; billing plans are resolved and embedded into each instance"
)
def create_group(
    request: InstancesGroupCreateRequest,
    service: InstanceService = Depends(get_instance_service),
    plans: PlanService = Depends(get_plan_service)
):
    if service.get_group(request.uuid):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Instances group already exists"
        )

    instances = []
    for inst in request.instances:
        plan = None
        if inst.plan_uuid:
            plan = plans.get_plan(inst.plan_uuid)
            if not plan:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"Billing plan not found: {inst.plan_uuid}"
                )
        doc = inst.model_dump(mode="json", exclude={"plan_uuid"})
        doc["billing_plan"] = plan.model_dump(mode="json", by_alias=True) if plan else None
        instances.append(doc)

    group = request.model_dump(mode="json", exclude={"instances"})
    group["instances"] = instances
    return service.create_group(group)


@router.get(
    "/instances-groups",
    response_model=List[InstancesGroup],
    summary="List instances groups"
)
def list_groups(
    service: InstanceService = Depends(get_instance_service)
):
    return service.list_groups()


@router.get(
    "/instances-groups/{group_uuid}",
    response_model=InstancesGroup,
    summary="Get instances group"
)
def get_group(
    group_uuid: str,
    service: InstanceService = Depends(get_instance_service)
):
    result = service.get_group(group_uuid)
    if not result:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Instances group not found"
        )
    return result


@router.delete(
    "/instances-groups/{group_uuid}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete instances group"
)
def delete_group(
    group_uuid: str,
    service: InstanceService = Depends(get_instance_service)
):
    if not service.delete_group(group_uuid):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Instances group not found"
        )


@router.get(
    "/instances/{instance_uuid}",
    response_model=dict,
    summary="Get instance"
)
def get_instance(
    instance_uuid: str,
    service: InstanceService = Depends(get_instance_service)
):
    result = service.get_instance(instance_uuid)
    if not result:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Instance not found"
        )
    return result


@router.patch(
    "/instances/{instance_uuid}/data",
    response_model=dict,
    summary="Update instance data",
    description="Merges keys into the instance metadata (watermarks, next payment dates)"
)
def update_instance_data(
    instance_uuid: str,
    request: InstanceDataUpdateRequest,
    service: InstanceService = Depends(get_instance_service)
):
    result = service.update_instance_data(instance_uuid, request.data)
    if not result:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Instance not found"
        )
    return result


@router.patch(
    "/instances/{instance_uuid}/status",
    response_model=dict,
    summary="Update instance status"
)
def update_instance_status(
    instance_uuid: str,
    request: InstanceStatusUpdateRequest,
    service: InstanceService = Depends(get_instance_service)
):
    result = service.update_instance_status(instance_uuid, request.status.value)
    if not result:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Instance not found"
        )
    return result
