"""
Billing accrual engine.

Every function here is pure: it takes the plan entry, the watermark ``last``
and the current time ``now`` (unix seconds) and returns the new billing
records together with the advanced watermark. Nothing is published or
persisted; the monitoring driver owns all I/O.
"""
import logging
import uuid
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from models.schemas import (
    BillingPlan,
    BillingRecord,
    Instance,
    Kind,
    Priority,
    ProductConf,
    ResourceConf,
)
from services.timeline import Record, filter_timeline

logger = logging.getLogger(__name__)

RECORDS_NAMESPACE = uuid.UUID("6f1c52a8-3c0e-4b7e-9a51-0d3e8f2b7c44")

LAST_MONITORING = "last_monitoring"
NEXT_PAYMENT_DATE = "next_payment_date"

Timeline = Union[List[Record], Callable[[], List[Record]]]
Amount = Callable[[], float]
Accrual = Tuple[List[BillingRecord], int]


def round_total(value: Union[float, Decimal]) -> float:
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def record_id(instance: str, key: str, start: int, end: int) -> str:
    return str(uuid.uuid5(RECORDS_NAMESPACE, f"{instance}/{key}/{start}/{end}"))


def watermark_key(resource_key: Optional[str] = None) -> str:
    if resource_key is None:
        return LAST_MONITORING
    return f"{resource_key}_{LAST_MONITORING}"


def next_payment_key(resource_key: Optional[str] = None) -> str:
    if resource_key is None:
        return NEXT_PAYMENT_DATE
    return f"{resource_key}_{NEXT_PAYMENT_DATE}"


def upgrade_key(resource_key: str) -> str:
    """Declared amount an upgrade of the resource was last charged for."""
    return f"{resource_key}_upgraded_to"


def next_payment_date(kind: Kind, last: int, period: int) -> int:
    if kind == Kind.POSTPAID:
        return last + period
    return last


def is_billable(record: Record, res: ResourceConf) -> bool:
    return (record.state in set(res.on)) != res.except_


def _product_record(product_key: str, instance: str, start: int, end: int, exec_: int,
                    total: float, priority: Priority) -> BillingRecord:
    return BillingRecord(
        id=record_id(instance, product_key, start, end),
        product=product_key,
        instance=instance,
        start=start,
        end=end,
        exec=exec_,
        total=round_total(total),
        priority=priority,
    )


def _resource_record(res: ResourceConf, instance: str, start: int, end: int, exec_: int,
                     total: float, priority: Priority,
                     meta: Optional[Dict[str, Any]] = None) -> BillingRecord:
    return BillingRecord(
        id=record_id(instance, res.key, start, end),
        resource=res.key,
        instance=instance,
        start=start,
        end=end,
        exec=exec_,
        total=round_total(total),
        priority=priority,
        meta=meta or {},
    )


def static_billing(
    product_key: str,
    product: ProductConf,
    instance: str,
    last: int,
    now: int,
    priority: Priority = Priority.NORMAL
) -> Accrual:
    if product.period <= 0:
        logger.warning(f"Product {product_key} has no period, use static_zero_billing")
        return [], last

    records = []
    if product.kind == Kind.POSTPAID:
        end = last + product.period
        while end <= now:
            records.append(_product_record(
                product_key, instance, last, end, last, product.price, Priority.NORMAL
            ))
            last = end
            end = last + product.period
    else:
        while last <= now:
            end = last + product.period
            records.append(_product_record(
                product_key, instance, last, end, last, product.price, priority
            ))
            last = end

    logger.debug(f"Static billing {product_key} for {instance}: {len(records)} records, last={last}")
    return records, last


def static_zero_billing(product_key: str, product: ProductConf, instance: str, last: int) -> Accrual:
    record = _product_record(
        product_key, instance, last, last + 1, last, product.price, Priority.URGENT
    )
    return [record], last


def capacity_billing(
    res: ResourceConf,
    amount: Amount,
    timeline: Timeline,
    instance: str,
    last: int,
    now: int,
    title: str = ""
) -> Accrual:
    if res.period <= 0:
        logger.warning(f"Resource {res.key} has no period, use capacity_zero_billing")
        return [], last

    records = []
    if res.kind == Kind.POSTPAID:
        full_timeline = None
        end = last + res.period
        while end <= now:
            if full_timeline is None:
                full_timeline = timeline() if callable(timeline) else list(timeline)
            for rec in filter_timeline(full_timeline, last, end):
                if not is_billable(rec, res):
                    continue
                total = Decimal(rec.duration()) / Decimal(res.period) \
                    * Decimal(str(res.price)) * Decimal(str(amount()))
                records.append(_resource_record(
                    res, instance, rec.start, rec.end, rec.end, total, Priority.NORMAL
                ))
            last = end
            end = last + res.period
    else:
        meta = {"instance_title": title}
        while last <= now:
            end = last + res.period
            records.append(_resource_record(
                res, instance, last, end, last,
                Decimal(str(res.price)) * Decimal(str(amount())),
                Priority.URGENT, meta
            ))
            last = end

    logger.debug(f"Capacity billing {res.key} for {instance}: {len(records)} records, last={last}")
    return records, last


def capacity_zero_billing(res: ResourceConf, amount: Amount, instance: str, last: int, now: int) -> Accrual:
    record = _resource_record(
        res, instance, last, last + 1, now,
        Decimal(str(res.price)) * Decimal(str(amount())),
        Priority.URGENT
    )
    return [record], last


def declared_amount(key: str, resources: Dict[str, Any]) -> float:
    if "drive" in key:
        return float(resources.get("drive_size", 0)) / 1024
    value = float(resources.get(key, 0))
    if key == "ram":
        value /= 1024
    return value


def manual_renew(instance: Instance, now: int) -> Tuple[List[BillingRecord], Dict[str, Any]]:
    """Bill the next period of an instance ahead of schedule.

    The product is renewed from ``last_monitoring`` and every periodic
    resource from its own watermark, using the amounts declared on the
    instance rather than the live VM. Returns the records and the instance
    data with advanced watermarks.
    """
    plan = instance.billing_plan
    data = dict(instance.data)
    records: List[BillingRecord] = []
    if plan is None:
        return records, data

    product = plan.products.get(instance.product) if instance.product else None
    if product is not None and product.period != 0:
        start = int(data.get(LAST_MONITORING, now))
        end = start + product.period
        records.append(_product_record(
            instance.product, instance.uuid, start, end, now, product.price, Priority.URGENT
        ))
        data[LAST_MONITORING] = end
        data[NEXT_PAYMENT_DATE] = next_payment_date(product.kind, end, product.period)

    drive_type = str(instance.resources.get("drive_type", "")).lower()
    for res in plan.resources:
        if res.period == 0:
            continue
        if "drive" in res.key and res.key != f"drive_{drive_type}":
            continue
        start = int(data.get(watermark_key(res.key), now))
        end = start + res.period
        total = Decimal(str(res.price)) * Decimal(str(declared_amount(res.key, instance.resources)))
        records.append(_resource_record(
            res, instance.uuid, start, end, now, total, Priority.URGENT
        ))
        data[watermark_key(res.key)] = end
        data[next_payment_key(res.key)] = next_payment_date(res.kind, end, res.period)

    return records, data


def upgrade_billing(
    res: ResourceConf,
    instance: str,
    watermark: int,
    old: float,
    new: float,
    now: int
) -> Optional[BillingRecord]:
    """Charge a prepaid resource change for the rest of the paid period."""
    if res.kind != Kind.PREPAID or res.period <= 0:
        return None
    remaining = watermark - now
    if remaining <= 0 or old == new:
        return None

    total = Decimal(str(res.price)) * Decimal(remaining) / Decimal(res.period) \
        * (Decimal(str(new)) - Decimal(str(old)))
    return _resource_record(res, instance, now, watermark, now, total, Priority.ADDITIONAL)


def plan_product(plan: BillingPlan, product_key: Optional[str]) -> Optional[ProductConf]:
    if not product_key:
        return None
    return plan.products.get(product_key)
