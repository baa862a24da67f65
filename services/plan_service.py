from typing import List, Optional
import uuid

from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from models.mysql_models import BillingPlanRow
from models.schemas import BillingPlan, PlanCreateRequest, PlanUpdateRequest


class PlanService:
    def __init__(self, mysql_session: Session):
        self.mysql_session = mysql_session

    def _to_plan(self, row: BillingPlanRow) -> BillingPlan:
        return BillingPlan(
            uuid=row.uuid,
            title=row.title,
            kind=row.kind,
            resources=row.resources or [],
            products=row.products or {},
            meta=row.meta or {}
        )

    def _get_row(self, plan_uuid: str) -> Optional[BillingPlanRow]:
        return self.mysql_session.query(BillingPlanRow).filter(
            BillingPlanRow.uuid == plan_uuid
        ).first()

    def create_plan(self, request: PlanCreateRequest) -> BillingPlan:
        row = BillingPlanRow(
            uuid=str(uuid.uuid4()),
            title=request.title,
            kind=request.kind.value,
            resources=[r.model_dump(mode="json", by_alias=True) for r in request.resources],
            products={k: p.model_dump(mode="json") for k, p in request.products.items()},
            meta=request.meta
        )
        self.mysql_session.add(row)
        self.mysql_session.commit()
        return self._to_plan(row)

    def get_plan(self, plan_uuid: str) -> Optional[BillingPlan]:
        row = self._get_row(plan_uuid)
        if not row:
            return None
        return self._to_plan(row)

    def list_plans(self) -> List[BillingPlan]:
        rows = self.mysql_session.query(BillingPlanRow).all()
        return [self._to_plan(row) for row in rows]

    def update_plan(self, plan_uuid: str, request: PlanUpdateRequest) -> Optional[BillingPlan]:
        row = self._get_row(plan_uuid)
        if not row:
            return None

        if request.title is not None:
            row.title = request.title
        if request.kind is not None:
            row.kind = request.kind.value
        if request.resources is not None:
            row.resources = [r.model_dump(mode="json", by_alias=True) for r in request.resources]
            flag_modified(row, "resources")
        if request.products is not None:
            row.products = {k: p.model_dump(mode="json") for k, p in request.products.items()}
            flag_modified(row, "products")
        if request.meta is not None:
            row.meta = request.meta
            flag_modified(row, "meta")

        self.mysql_session.commit()
        return self._to_plan(row)

    def delete_plan(self, plan_uuid: str) -> bool:
        row = self._get_row(plan_uuid)
        if not row:
            return False
        self.mysql_session.delete(row)
        self.mysql_session.commit()
        return True
