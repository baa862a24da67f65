from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from models.schemas import Event, Instance, InstanceStatus, Kind
from services.accrual import LAST_MONITORING

NOTIFICATION_PERIOD = "notification_period"
SUSPEND_TIME = "suspend_time"
SUSPEND_NOTIFICATION_PERIOD = "suspend_notification_period"

# (seconds before expiry, days reported)
NOTIFICATION_PERIODS: List[Tuple[int, int]] = [
    (0, 0),
    (86400, 1),
    (172800, 2),
    (259200, 3),
    (604800, 7),
    (1296000, 15),
    (2592000, 30),
]

# (seconds since suspension, days reported), longest first
SUSPEND_NOTIFICATION_PERIODS: List[Tuple[int, int]] = [
    (604800, 7),
    (259200, 3),
    (172800, 2),
    (86400, 1),
]


def renew_event(instance: Instance) -> Event:
    return Event(uuid=instance.uuid, key="instance_renew")


def suspended_event(instance: Instance) -> Event:
    return Event(uuid=instance.uuid, key="instance_suspended")


def unsuspended_event(instance: Instance) -> Event:
    return Event(uuid=instance.uuid, key="instance_unsuspended")


def expiry_notification(instance: Instance, data: Dict[str, Any], now: int) -> Optional[Event]:
    """Build the expiry notification due for a static plan instance.

    At most one event per notification bucket: the bucket last reported is
    kept in ``data["notification_period"]`` and ``data`` is updated in place.
    """
    if instance.status == InstanceStatus.DEL:
        return None
    if LAST_MONITORING not in data or instance.billing_plan is None:
        return None
    product = instance.billing_plan.products.get(instance.product or "")
    if product is None:
        return None

    last = int(data[LAST_MONITORING])
    if product.kind == Kind.PREPAID:
        expiration = last
    else:
        expiration = last + product.period
    diff = expiration - now

    for seconds, days in NOTIFICATION_PERIODS:
        if diff > seconds:
            continue
        if seconds == product.period:
            return None
        reported = data.get(NOTIFICATION_PERIOD)
        if reported is not None and int(reported) == days:
            return None
        data[NOTIFICATION_PERIOD] = days
        date = datetime.fromtimestamp(expiration, tz=timezone.utc)
        return Event(
            uuid=instance.uuid,
            key="expiry_notification",
            data={
                "period": days,
                "product": instance.product,
                "date": f"{date.day}/{date.month}/{date.year}",
            }
        )
    return None


def suspend_notification(instance: Instance, data: Dict[str, Any], now: int) -> Optional[Event]:
    """Report how long a suspended instance has been suspended, once per bucket."""
    if instance.status == InstanceStatus.DEL or SUSPEND_TIME not in data:
        return None

    diff = now - int(data[SUSPEND_TIME])
    for seconds, days in SUSPEND_NOTIFICATION_PERIODS:
        if diff < seconds:
            continue
        reported = data.get(SUSPEND_NOTIFICATION_PERIOD)
        if reported is not None and int(reported) == days:
            return None
        data[SUSPEND_NOTIFICATION_PERIOD] = days
        return Event(uuid=instance.uuid, key="suspend_expiry_notification", data={"period": days})
    return None
