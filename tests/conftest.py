"""
Pytest configuration for the billing monitor tests.
Points the SQL layer at an in-memory SQLite database before any imports.
"""

import os

os.environ.setdefault("MYSQL_URI", "sqlite://")
os.environ.setdefault("MONGO_URI", "mongodb://localhost:27017")

import pytest

from models.schemas import (
    BillingPlan,
    Instance,
    InstanceStatus,
    PlanKind,
    ProductConf,
    ResourceConf,
    VMDescriptor,
    VMDisk,
    VMNic,
    HistoryRecord,
)


@pytest.fixture
def vm():
    return VMDescriptor(
        id=42,
        name="vm-42",
        stime=0,
        vcpu=2,
        memory=2048,
        disks=[VMDisk(size=10240, drive_type="SSD"), VMDisk(size=20480, drive_type="HDD")],
        nics=[VMNic(network_id=1, vnet_type="PUBLIC"), VMNic(network_id=2, vnet_type="PRIVATE")],
        history=[HistoryRecord(seq=0, stime=0, state=3, lcm_state=3)],
    )


@pytest.fixture
def dynamic_plan():
    return BillingPlan(
        uuid="plan-dynamic",
        title="Pay as you go",
        kind=PlanKind.DYNAMIC,
        resources=[
            ResourceConf(key="cpu", period=60, price=1.0, on=["RUNNING"]),
            ResourceConf(key="ram", period=60, price=0.5, on=["RUNNING"]),
        ],
    )


@pytest.fixture
def static_plan():
    return BillingPlan(
        uuid="plan-static",
        title="Monthly",
        kind=PlanKind.STATIC,
        products={"basic": ProductConf(kind="POSTPAID", period=60, price=10.0, title="Basic")},
    )


@pytest.fixture
def make_instance():
    def _make(plan=None, data=None, status=InstanceStatus.UP, product=None, resources=None):
        return Instance(
            uuid="inst-1",
            title="web",
            status=status,
            product=product,
            billing_plan=plan,
            resources=resources or {},
            data={"vmid": 42} if data is None else data,
        )
    return _make
