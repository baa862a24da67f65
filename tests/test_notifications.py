"""
Tests for renew, suspend and expiry notification events.
"""

import pytest

from models.schemas import BillingPlan, Instance, InstanceStatus, Kind, PlanKind, ProductConf
from services.accrual import LAST_MONITORING
from services.notifications import (
    NOTIFICATION_PERIOD,
    SUSPEND_NOTIFICATION_PERIOD,
    SUSPEND_TIME,
    expiry_notification,
    renew_event,
    suspend_notification,
    suspended_event,
    unsuspended_event,
)

MONTH = 2592000


@pytest.fixture
def monthly():
    def _make(kind=Kind.POSTPAID, status=InstanceStatus.UP):
        plan = BillingPlan(
            kind=PlanKind.STATIC,
            products={"basic": ProductConf(kind=kind, period=MONTH, price=10)},
        )
        return Instance(uuid="inst", product="basic", billing_plan=plan, status=status)
    return _make


class TestExpiryNotification:
    def test_one_day_left(self, monthly):
        data = {LAST_MONITORING: 0}
        event = expiry_notification(monthly(), data, MONTH - 3600)

        assert event.key == "expiry_notification"
        assert event.uuid == "inst"
        assert event.data == {"period": 1, "product": "basic", "date": "31/1/1970"}
        assert data[NOTIFICATION_PERIOD] == 1

    def test_bucket_reported_once(self, monthly):
        data = {LAST_MONITORING: 0}
        assert expiry_notification(monthly(), data, MONTH - 3600) is not None
        assert expiry_notification(monthly(), data, MONTH - 1800) is None

    def test_next_bucket_reported_again(self, monthly):
        data = {LAST_MONITORING: 0}
        expiry_notification(monthly(), data, MONTH - 3 * 86400)
        assert data[NOTIFICATION_PERIOD] == 3

        event = expiry_notification(monthly(), data, MONTH + 10)
        assert event.data["period"] == 0

    def test_bucket_equal_to_period_is_silent(self, monthly):
        data = {LAST_MONITORING: 0}
        assert expiry_notification(monthly(), data, 10) is None
        assert NOTIFICATION_PERIOD not in data

    def test_prepaid_expires_at_watermark(self, monthly):
        data = {LAST_MONITORING: MONTH}
        event = expiry_notification(monthly(Kind.PREPAID), data, MONTH - 3600)
        assert event.data["period"] == 1

    def test_deleted_or_unbilled_instance(self, monthly):
        assert expiry_notification(monthly(status=InstanceStatus.DEL), {LAST_MONITORING: 0}, MONTH) is None
        assert expiry_notification(monthly(), {}, MONTH) is None
        assert expiry_notification(Instance(uuid="x"), {LAST_MONITORING: 0}, MONTH) is None


DAY = 86400


class TestSuspendNotification:
    def test_one_day_suspended(self, monthly):
        data = {SUSPEND_TIME: 1000}
        event = suspend_notification(monthly(), data, 1000 + DAY)

        assert event.key == "suspend_expiry_notification"
        assert event.data == {"period": 1}
        assert data[SUSPEND_NOTIFICATION_PERIOD] == 1

    def test_longest_elapsed_bucket_wins(self, monthly):
        data = {SUSPEND_TIME: 0}
        event = suspend_notification(monthly(), data, 8 * DAY)
        assert event.data == {"period": 7}

    def test_bucket_reported_once(self, monthly):
        data = {SUSPEND_TIME: 0}
        assert suspend_notification(monthly(), data, 2 * DAY) is not None
        assert suspend_notification(monthly(), data, 2 * DAY + 600) is None

        event = suspend_notification(monthly(), data, 3 * DAY)
        assert event.data == {"period": 3}

    def test_too_early_or_not_suspended(self, monthly):
        data = {SUSPEND_TIME: 0}
        assert suspend_notification(monthly(), data, DAY - 1) is None
        assert SUSPEND_NOTIFICATION_PERIOD not in data
        assert suspend_notification(monthly(), {}, 10 * DAY) is None
        assert suspend_notification(monthly(status=InstanceStatus.DEL), {SUSPEND_TIME: 0}, 10 * DAY) is None


def test_renew_event(monthly):
    event = renew_event(monthly())
    assert event.key == "instance_renew"
    assert event.uuid == "inst"


def test_suspend_status_events(monthly):
    assert suspended_event(monthly()).key == "instance_suspended"
    assert unsuspended_event(monthly()).key == "instance_unsuspended"
