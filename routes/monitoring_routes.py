from fastapi import APIRouter, Depends, HTTPException, status

from models.schemas import MonitoringFlagRequest
from services.instance_service import InstanceService

router = APIRouter(prefix="/monitoring", tags=["Monitoring"])


def get_instance_service() -> InstanceService:
    return InstanceService()


@router.post(
    "/flags",
    response_model=dict,
    status_code=status.HTTP_201_CREATED,
    summary="Acquire monitoring flag",
    description="Marks an instances group as taken for one monitoring cycle; 409 if another worker holds it"
)
def acquire_flag(
    request: MonitoringFlagRequest,
    service: InstanceService = Depends(get_instance_service)
):
    if not service.acquire_flag(request.group, request.cycle, request.owner):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Group {request.group} is already monitored in cycle {request.cycle}"
        )
    return {"group": request.group, "cycle": request.cycle, "acquired": True}
