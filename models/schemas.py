from typing import Dict, List, Optional, Any
from pydantic import BaseModel, ConfigDict, Field
from enum import Enum


class CanonicalState(str, Enum):
    INIT = "INIT"
    RUNNING = "RUNNING"
    STOPPED = "STOPPED"
    SUSPENDED = "SUSPENDED"
    DELETED = "DELETED"
    FAILURE = "FAILURE"
    OPERATION = "OPERATION"
    UNKNOWN = "UNKNOWN"


class Kind(str, Enum):
    PREPAID = "PREPAID"
    POSTPAID = "POSTPAID"


class PlanKind(str, Enum):
    STATIC = "STATIC"
    DYNAMIC = "DYNAMIC"


class Priority(str, Enum):
    NORMAL = "NORMAL"
    URGENT = "URGENT"
    ADDITIONAL = "ADDITIONAL"


class InstanceStatus(str, Enum):
    INIT = "INIT"
    UP = "UP"
    SUS = "SUS"
    DEL = "DEL"
    DETACHED = "DETACHED"


class ResourceConf(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    key: str
    kind: Kind = Kind.POSTPAID
    period: int = Field(0, ge=0)
    price: float = 0
    on: List[CanonicalState] = []
    except_: bool = Field(False, alias="except")


class ProductConf(BaseModel):
    kind: Kind = Kind.POSTPAID
    period: int = Field(0, ge=0)
    price: float = 0
    title: Optional[str] = None


class BillingPlan(BaseModel):
    uuid: Optional[str] = None
    title: str = ""
    kind: PlanKind = PlanKind.DYNAMIC
    resources: List[ResourceConf] = []
    products: Dict[str, ProductConf] = {}
    meta: Dict[str, Any] = {}


class BillingRecord(BaseModel):
    id: str
    resource: Optional[str] = None
    product: Optional[str] = None
    instance: str
    start: int
    end: int
    exec: int
    total: float
    priority: Priority = Priority.NORMAL
    meta: Dict[str, Any] = {}


class Event(BaseModel):
    uuid: str
    key: str
    data: Dict[str, Any] = {}


class HistoryRecord(BaseModel):
    seq: int
    hostname: str = ""
    stime: int
    state: Optional[int] = None
    lcm_state: Optional[int] = None
    lcm_state_str: Optional[str] = None
    action: Optional[int] = None


class VMDisk(BaseModel):
    size: float = 0
    drive_type: str = ""


class VMNic(BaseModel):
    network_id: Optional[int] = None
    vnet_type: Optional[str] = None


class VMDescriptor(BaseModel):
    id: int
    name: str = ""
    stime: int = 0
    vcpu: int = 0
    memory: int = 0
    disks: List[VMDisk] = []
    nics: List[VMNic] = []
    history: List[HistoryRecord] = []
    state: Optional[int] = None
    lcm_state: Optional[int] = None
    lcm_state_str: Optional[str] = None


class InstanceState(BaseModel):
    state: CanonicalState = CanonicalState.UNKNOWN
    meta: Dict[str, Any] = {}


class Instance(BaseModel):
    uuid: str
    title: str = ""
    status: InstanceStatus = InstanceStatus.INIT
    state: Optional[InstanceState] = None
    product: Optional[str] = None
    billing_plan: Optional[BillingPlan] = None
    resources: Dict[str, Any] = {}
    data: Dict[str, Any] = {}


class InstancesGroup(BaseModel):
    uuid: str
    title: str = ""
    type: str = "ione"
    status: Optional[InstanceStatus] = None
    data: Dict[str, Any] = {}
    instances: List[Instance] = []


class PlanCreateRequest(BaseModel):
    title: str
    kind: PlanKind = PlanKind.DYNAMIC
    resources: List[ResourceConf] = []
    products: Dict[str, ProductConf] = {}
    meta: Dict[str, Any] = {}


class PlanUpdateRequest(BaseModel):
    title: Optional[str] = None
    kind: Optional[PlanKind] = None
    resources: Optional[List[ResourceConf]] = None
    products: Optional[Dict[str, ProductConf]] = None
    meta: Optional[Dict[str, Any]] = None


class InstanceCreateRequest(BaseModel):
    uuid: str
    title: str = ""
    status: InstanceStatus = InstanceStatus.INIT
    product: Optional[str] = None
    plan_uuid: Optional[str] = None
    resources: Dict[str, Any] = {}
    data: Dict[str, Any] = {}


class InstancesGroupCreateRequest(BaseModel):
    uuid: str
    title: str = ""
    type: str = "ione"
    status: Optional[InstanceStatus] = None
    data: Dict[str, Any] = {}
    instances: List[InstanceCreateRequest] = []


class InstanceDataUpdateRequest(BaseModel):
    data: Dict[str, Any] = Field(..., min_length=1)


class InstanceStatusUpdateRequest(BaseModel):
    status: InstanceStatus


class MonitoringFlagRequest(BaseModel):
    group: str
    cycle: int
    owner: Optional[str] = None


class TimelineEntry(BaseModel):
    start: int
    end: Optional[int] = None
    state: CanonicalState


class PreviewRequest(BaseModel):
    instance: str = "preview"
    resource: Optional[ResourceConf] = None
    product_key: Optional[str] = None
    product: Optional[ProductConf] = None
    amount: float = 1.0
    timeline: List[TimelineEntry] = []
    last: int
    now: int


class PreviewResponse(BaseModel):
    records: List[BillingRecord]
    last: int
