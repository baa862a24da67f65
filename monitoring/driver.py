import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from models.schemas import (
    BillingRecord,
    CanonicalState,
    Event,
    Instance,
    InstanceStatus,
    Kind,
    PlanKind,
    Priority,
)
from services.accrual import (
    LAST_MONITORING,
    NEXT_PAYMENT_DATE,
    manual_renew,
    next_payment_date,
    next_payment_key,
    plan_product,
    static_billing,
    static_zero_billing,
    upgrade_billing,
    upgrade_key,
    watermark_key,
)
from services.handlers import AccrualContext, BillingHandlers, resources_diff
from services.lazy import AsyncLazy
from services.notifications import (
    SUSPEND_NOTIFICATION_PERIOD,
    SUSPEND_TIME,
    expiry_notification,
    renew_event,
    suspend_notification,
    suspended_event,
    unsuspended_event,
)
from services.states import vm_state
from services.timeline import make_timeline_from_vm
from .api_client import (
    APIError,
    APIResult,
    BillingAPIClient,
    PlatformClient,
    PlatformError,
    get_api_client,
    get_platform_client,
)
from .config import monitoring_config, MonitoringConfig
from .publisher import BusPublisher, PublishError

logger = logging.getLogger(__name__)

SUSPENDED_MANUALLY = "suspended_manually"
CANCELED_RENEW = "canceled_renew"


@dataclass
class InstanceBillingResult:
    instance: str
    success: bool
    skipped: bool = False
    records: List[BillingRecord] = field(default_factory=list)
    events: List[Event] = field(default_factory=list)
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    processing_time_ms: float = 0


@dataclass
class StatusActions:
    suspend: bool = False
    resume: bool = False
    delete: bool = False


@dataclass
class MonitoringStats:
    cycles: int = 0
    groups_processed: int = 0
    groups_skipped: int = 0
    instances_processed: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    records_published: int = 0
    events_published: int = 0

    total_processing_time_ms: float = 0

    @property
    def avg_processing_time_ms(self) -> float:
        if self.instances_processed == 0:
            return 0
        return self.total_processing_time_ms / self.instances_processed

    def record(self, result: InstanceBillingResult):
        self.instances_processed += 1
        self.total_processing_time_ms += result.processing_time_ms

        if result.skipped:
            self.skipped += 1
        elif result.success:
            self.successful += 1
            self.records_published += len(result.records)
            self.events_published += len(result.events)
        else:
            self.failed += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cycles": self.cycles,
            "groups_processed": self.groups_processed,
            "groups_skipped": self.groups_skipped,
            "instances_processed": self.instances_processed,
            "successful": self.successful,
            "failed": self.failed,
            "skipped": self.skipped,
            "records_published": self.records_published,
            "events_published": self.events_published,
            "avg_processing_time_ms": round(self.avg_processing_time_ms, 2),
        }


def _elapsed_ms(start_time: datetime) -> float:
    return (datetime.utcnow() - start_time).total_seconds() * 1000


def _has_prepaid(instance: Instance) -> bool:
    plan = instance.billing_plan
    return plan is not None and any(res.kind == Kind.PREPAID for res in plan.resources)


class MonitoringDriver:
    def __init__(
        self,
        api_client: BillingAPIClient = None,
        platform: PlatformClient = None,
        publisher: BusPublisher = None,
        handlers: BillingHandlers = None,
        clock: Callable[[], int] = None,
        config: MonitoringConfig = None
    ):
        self.api_client = api_client or get_api_client()
        self.platform = platform or get_platform_client()
        self.publisher = publisher or BusPublisher()
        self.handlers = handlers or BillingHandlers()
        self.clock = clock or (lambda: int(time.time()))
        self.config = config or monitoring_config
        self.stats = MonitoringStats()

    async def _resolve_vmid(self, instance: Instance) -> int:
        if "vmid" in instance.data:
            return int(instance.data["vmid"])
        if "vm_name" in instance.data:
            return await self.platform.get_vm_id_by_name(str(instance.data["vm_name"]))
        raise PlatformError(0, f"Instance {instance.uuid} has neither vmid nor vm_name")

    def _vm_cells(self, vmid: int):
        vm = AsyncLazy(lambda: self.platform.get_vm(vmid))

        async def timeline():
            return make_timeline_from_vm(await vm())

        return vm, AsyncLazy(timeline)

    async def _accrue_resources(
        self,
        ctx: AccrualContext,
        data: Dict[str, Any],
        created: int,
        now: int
    ) -> List[BillingRecord]:
        records: List[BillingRecord] = []
        plan = ctx.instance.billing_plan

        for res in plan.resources:
            handler = self.handlers.get(res.key)
            if handler is None:
                logger.warning(f"No handler for resource {res.key} of instance {ctx.instance.uuid}, skipping")
                continue

            key = watermark_key(res.key)
            if res.period == 0:
                if key in data:
                    continue
                new_records, _ = await handler(ctx, res, created, now)
                records.extend(new_records)
                data[key] = now
                continue

            has_watermark = key in data
            last = int(data[key]) if has_watermark else created
            new_records, new_last = await handler(ctx, res, last, now)
            if not has_watermark:
                new_records = [r.model_copy(update={"priority": Priority.URGENT}) for r in new_records]
            records.extend(new_records)

            if new_last != last or not has_watermark:
                data[key] = new_last
                data[next_payment_key(res.key)] = next_payment_date(res.kind, new_last, res.period)

        return records

    def _accrue_product(self, instance: Instance, data: Dict[str, Any], created: int, now: int) -> List[BillingRecord]:
        product = plan_product(instance.billing_plan, instance.product)
        if product is None:
            logger.warning(f"Product {instance.product} not found in plan of instance {instance.uuid}, skipping")
            return []

        if product.period == 0:
            if LAST_MONITORING in data:
                return []
            records, last = static_zero_billing(instance.product, product, instance.uuid, created)
            data[LAST_MONITORING] = last
            return records

        has_watermark = LAST_MONITORING in data
        last = int(data[LAST_MONITORING]) if has_watermark else created
        priority = Priority.NORMAL if has_watermark else Priority.URGENT
        records, new_last = static_billing(instance.product, product, instance.uuid, last, now, priority)
        if new_last != last or not has_watermark:
            data[LAST_MONITORING] = new_last
            data[NEXT_PAYMENT_DATE] = next_payment_date(product.kind, new_last, product.period)
        return records

    async def _commit(
        self,
        instance: Instance,
        records: List[BillingRecord],
        data: Dict[str, Any],
        events: List[Event]
    ) -> Optional[str]:
        """Publish records, persist metadata, publish events; returns an error or None.

        Metadata is persisted only after the records were published, a failed
        publish leaves the watermarks where they were.
        """
        if records:
            try:
                await self.publisher.publish_records(records)
            except PublishError as e:
                logger.error(f"Failed to publish {len(records)} records for {instance.uuid}: {e}")
                return str(e)

        if data != instance.data:
            response = await self.api_client.update_instance_data(instance.uuid, data)
            if response.result != APIResult.SUCCESS:
                logger.error(f"Failed to persist data of {instance.uuid}: {response.error}")
                return response.error or "Failed to persist data"
            try:
                await self.publisher.publish_data(instance.uuid, data)
            except PublishError as e:
                logger.warning(f"Failed to publish data of {instance.uuid}: {e}")

        for event in events:
            try:
                await self.publisher.publish_event(event)
            except PublishError as e:
                logger.error(f"Failed to publish event {event.key} for {instance.uuid}: {e}")
        return None

    def _handle_status(
        self,
        instance: Instance,
        status: InstanceStatus,
        suspended: bool,
        data: Dict[str, Any],
        next_payment: Any,
        product_records: List[BillingRecord],
        resource_records: List[BillingRecord],
        events: List[Event],
        now: int
    ) -> StatusActions:
        """Apply the billing status to the instance metadata and collect the VM actions it requires.

        A SUS status suspends a VM that was billed in this pass; while the VM
        stays suspended the product watermark is pinned to now so the time off
        is not charged. Any other status resumes a VM the billing had suspended,
        unless it was suspended manually.
        """
        actions = StatusActions()
        is_static = LAST_MONITORING in data
        manual = bool(data.get(SUSPENDED_MANUALLY))

        if status == InstanceStatus.SUS:
            billed = bool(product_records) or (bool(resource_records) and not is_static)
            if billed and not suspended:
                actions.suspend = True
                data[SUSPEND_TIME] = now
                events.append(suspended_event(instance))
            if suspended and is_static:
                data[LAST_MONITORING] = now
                if next_payment is None:
                    data.pop(NEXT_PAYMENT_DATE, None)
                else:
                    data[NEXT_PAYMENT_DATE] = next_payment
        elif suspended and not manual:
            actions.resume = True
            data.pop(SUSPEND_TIME, None)
            data.pop(SUSPEND_NOTIFICATION_PERIOD, None)
            events.append(unsuspended_event(instance))

        if status == InstanceStatus.DETACHED:
            data[LAST_MONITORING] = now

        if suspended and not manual:
            notification = suspend_notification(instance, data, now)
        else:
            notification = expiry_notification(instance, data, now)
        if notification is not None:
            events.append(notification)

        if CANCELED_RENEW in data:
            canceled = bool(data[CANCELED_RENEW])
            if (canceled and (product_records or not is_static)) or status == InstanceStatus.SUS:
                actions.delete = True
        return actions

    async def _apply_actions(self, instance: Instance, vmid: int, actions: StatusActions):
        try:
            if actions.suspend:
                await self.platform.suspend_vm(vmid)
                logger.info(f"Suspended VM {vmid} of instance {instance.uuid}")
            if actions.resume:
                await self.platform.resume_vm(vmid)
                logger.info(f"Resumed VM {vmid} of instance {instance.uuid}")
        except PlatformError as e:
            logger.warning(f"Could not change power state of VM {vmid} ({instance.uuid}): {e}")

        if actions.delete:
            response = await self.api_client.update_instance_status(instance.uuid, InstanceStatus.DEL)
            if response.result != APIResult.SUCCESS:
                logger.warning(f"Failed to delete instance {instance.uuid} after canceled renew: {response.error}")
            else:
                logger.info(f"Instance {instance.uuid} renew was canceled, status set to DEL")

    async def handle_instance(
        self,
        instance: Instance,
        status: Optional[InstanceStatus] = None
    ) -> InstanceBillingResult:
        """Run one accrual pass for an instance.

        ``status`` is the billing status of the owning group; it defaults to
        the instance's own status.
        """
        start_time = datetime.utcnow()

        if instance.status == InstanceStatus.DEL:
            logger.debug(f"Instance {instance.uuid} is deleted, skipping")
            return InstanceBillingResult(instance=instance.uuid, success=True, skipped=True)

        plan = instance.billing_plan
        if plan is None:
            logger.warning(f"Instance {instance.uuid} has no billing plan, skipping")
            return InstanceBillingResult(instance=instance.uuid, success=True, skipped=True)

        status = status or instance.status
        now = self.clock()
        data = dict(instance.data)

        try:
            vmid = await self._resolve_vmid(instance)
            vm, timeline = self._vm_cells(vmid)
            if "vm_created" in data:
                created = int(data["vm_created"])
            else:
                created = (await vm()).stime
                data["vm_created"] = created

            ctx = AccrualContext(instance=instance, vm=vm, timeline=timeline)
            resource_records = await self._accrue_resources(ctx, data, created, now)
            suspended = vm_state(await vm()) == CanonicalState.SUSPENDED
        except PlatformError as e:
            logger.error(f"Failed to fetch VM of instance {instance.uuid}: {e}")
            return InstanceBillingResult(
                instance=instance.uuid,
                success=False,
                error=str(e),
                processing_time_ms=_elapsed_ms(start_time)
            )

        events: List[Event] = []
        product_records: List[BillingRecord] = []
        next_payment = data.get(NEXT_PAYMENT_DATE)
        one_payment = False
        if plan.kind == PlanKind.STATIC:
            product = plan_product(plan, instance.product)
            one_payment = product is not None and product.period == 0
            product_records = self._accrue_product(instance, data, created, now)
            if product_records:
                events.append(renew_event(instance))

        actions = StatusActions()
        if not one_payment:
            actions = self._handle_status(
                instance, status, suspended, data, next_payment,
                product_records, resource_records, events, now
            )

        records = resource_records + product_records
        error = await self._commit(instance, records, data, events)
        if error is None:
            await self._apply_actions(instance, vmid, actions)
        result = InstanceBillingResult(
            instance=instance.uuid,
            success=error is None,
            records=records,
            events=events,
            data=data,
            error=error,
            processing_time_ms=_elapsed_ms(start_time)
        )

        if result.success:
            logger.debug(
                f"Processed instance {instance.uuid}: {len(records)} records, "
                f"{len(events)} events in {result.processing_time_ms:.2f}ms"
            )
        return result

    async def renew_instance(self, instance: Instance) -> InstanceBillingResult:
        start_time = datetime.utcnow()
        records, data = manual_renew(instance, self.clock())
        events = [renew_event(instance)] if records else []

        error = await self._commit(instance, records, data, events)
        if error is None:
            logger.info(f"Renewed instance {instance.uuid}: {len(records)} records")
        return InstanceBillingResult(
            instance=instance.uuid,
            success=error is None,
            records=records,
            events=events,
            data=data,
            error=error,
            processing_time_ms=_elapsed_ms(start_time)
        )

    async def handle_upgrades(self, instance: Instance) -> InstanceBillingResult:
        """Charge prepaid resources whose declared amount differs from the live VM."""
        start_time = datetime.utcnow()
        plan = instance.billing_plan
        if plan is None:
            return InstanceBillingResult(instance=instance.uuid, success=True, skipped=True)

        now = self.clock()
        try:
            vmid = await self._resolve_vmid(instance)
            vm = await self.platform.get_vm(vmid)
        except PlatformError as e:
            logger.error(f"Failed to fetch VM of instance {instance.uuid}: {e}")
            return InstanceBillingResult(instance=instance.uuid, success=False, error=str(e))

        by_key = {res.key: res for res in plan.resources}
        data = dict(instance.data)
        records = []
        for diff in resources_diff(instance, vm):
            res = by_key.get(diff.key)
            key = watermark_key(diff.key)
            if res is None or key not in data:
                continue
            charged = data.get(upgrade_key(diff.key))
            if charged is not None and float(charged) == diff.new:
                continue
            record = upgrade_billing(res, instance.uuid, int(data[key]), diff.old, diff.new, now)
            if record is not None:
                records.append(record)
                data[upgrade_key(diff.key)] = diff.new

        error = await self._commit(instance, records, data, [])
        return InstanceBillingResult(
            instance=instance.uuid,
            success=error is None,
            records=records,
            data=data,
            error=error,
            processing_time_ms=_elapsed_ms(start_time)
        )

    async def run_cycle(self, cycle: Optional[int] = None) -> List[InstanceBillingResult]:
        if cycle is None:
            cycle = self.clock() // self.config.interval
        self.stats.cycles += 1

        try:
            groups = await self.api_client.list_instances_groups()
        except APIError as e:
            logger.error(f"Failed to list instances groups: {e}")
            return []

        semaphore = asyncio.Semaphore(self.config.max_concurrent)

        async def bounded(instance: Instance, status: Optional[InstanceStatus]) -> InstanceBillingResult:
            async with semaphore:
                result = await self.handle_instance(instance, status)
                if not result.success or result.skipped or not _has_prepaid(instance):
                    return result
                upgraded = await self.handle_upgrades(instance.model_copy(update={"data": result.data}))
                result.records.extend(upgraded.records)
                if upgraded.success:
                    result.data = upgraded.data
                else:
                    logger.error(f"Failed to bill upgrades of {instance.uuid}: {upgraded.error}")
                    result.success = False
                    result.error = upgraded.error
                return result

        batch: List[tuple] = []
        for group in groups:
            response = await self.api_client.acquire_flag(group.uuid, cycle, self.config.worker_id)
            if response.result == APIResult.CONFLICT:
                logger.info(f"Group {group.uuid} is already monitored in cycle {cycle}, skipping")
                self.stats.groups_skipped += 1
                continue
            if response.result != APIResult.SUCCESS:
                logger.warning(f"Failed to acquire flag for group {group.uuid}: {response.error}")
                self.stats.groups_skipped += 1
                continue
            self.stats.groups_processed += 1
            batch.extend((instance, group.status) for instance in group.instances)

        instances = [instance for instance, _ in batch]
        outcomes = await asyncio.gather(*(bounded(i, s) for i, s in batch), return_exceptions=True)

        results = []
        for instance, outcome in zip(instances, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Exception processing instance {instance.uuid}: {outcome}")
                outcome = InstanceBillingResult(instance=instance.uuid, success=False, error=str(outcome))
            self.stats.record(outcome)
            results.append(outcome)

        logger.info(
            f"Cycle {cycle} done: {len(instances)} instances, "
            f"{sum(1 for r in results if not r.success)} failed"
        )
        return results

    def get_metrics(self) -> Dict[str, Any]:
        return self.stats.to_dict()
