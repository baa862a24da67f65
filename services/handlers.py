import logging
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional

from models.schemas import Instance, ResourceConf, VMDescriptor
from services.accrual import Accrual, Amount, capacity_billing, capacity_zero_billing
from services.lazy import AsyncLazy, Lazy
from services.timeline import Record

logger = logging.getLogger(__name__)

DRIVE_KIND_RE = re.compile(r"drive.*_([A-Za-z]+)")


@dataclass
class AccrualContext:
    instance: Instance
    vm: AsyncLazy
    timeline: AsyncLazy


HandlerFunc = Callable[[AccrualContext, ResourceConf, int, int], Awaitable[Accrual]]


async def _accrue(ctx: AccrualContext, res: ResourceConf, amount: Amount, last: int, now: int) -> Accrual:
    if res.period == 0:
        return capacity_zero_billing(res, amount, ctx.instance.uuid, last, now)
    timeline: List[Record] = await ctx.timeline()
    return capacity_billing(res, amount, timeline, ctx.instance.uuid, last, now, ctx.instance.title)


def resource_key_to_drive_kind(key: str) -> str:
    match = DRIVE_KIND_RE.search(key)
    if not match:
        return "UNKNOWN"
    return match.group(1).upper()


def public_ips(vm: VMDescriptor) -> float:
    count = 0.0
    for nic in vm.nics:
        if nic.vnet_type is None:
            logger.warning(f"VM {vm.id} has NIC on network {nic.network_id} with unknown type")
            continue
        if nic.vnet_type.upper() == "PUBLIC":
            count += 1.0
    return count


def drive_capacity(vm: VMDescriptor, drive_kind: str) -> float:
    return sum(disk.size / 1024 for disk in vm.disks if disk.drive_type.upper() == drive_kind)


async def handle_cpu_billing(ctx: AccrualContext, res: ResourceConf, last: int, now: int) -> Accrual:
    vm: VMDescriptor = await ctx.vm()
    return await _accrue(ctx, res, Lazy(lambda: float(vm.vcpu)), last, now)


async def handle_ram_billing(ctx: AccrualContext, res: ResourceConf, last: int, now: int) -> Accrual:
    vm: VMDescriptor = await ctx.vm()
    return await _accrue(ctx, res, Lazy(lambda: vm.memory / 1024), last, now)


async def handle_ip_billing(ctx: AccrualContext, res: ResourceConf, last: int, now: int) -> Accrual:
    vm: VMDescriptor = await ctx.vm()
    return await _accrue(ctx, res, Lazy(lambda: public_ips(vm)), last, now)


async def handle_drive_billing(ctx: AccrualContext, res: ResourceConf, last: int, now: int) -> Accrual:
    vm: VMDescriptor = await ctx.vm()
    drive_kind = resource_key_to_drive_kind(res.key)
    return await _accrue(ctx, res, Lazy(lambda: drive_capacity(vm, drive_kind)), last, now)


DEFAULT_HANDLERS: Dict[str, HandlerFunc] = {
    "cpu": handle_cpu_billing,
    "ram": handle_ram_billing,
    "ips_public": handle_ip_billing,
}


class BillingHandlers:
    """Resource key to handler mapping, ``drive_<kind>`` keys share one handler."""

    def __init__(
        self,
        handlers: Optional[Dict[str, HandlerFunc]] = None,
        drive_handler: Optional[HandlerFunc] = handle_drive_billing
    ):
        self._handlers = dict(DEFAULT_HANDLERS if handlers is None else handlers)
        self._drive_handler = drive_handler

    def get(self, key: str) -> Optional[HandlerFunc]:
        if "drive_" in key and self._drive_handler is not None:
            return self._drive_handler
        return self._handlers.get(key)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None


@dataclass
class ResourceDiff:
    key: str
    old: float
    new: float


def resources_diff(instance: Instance, vm: VMDescriptor) -> List[ResourceDiff]:
    """Differences between the amounts declared on the instance and the live VM."""
    diffs = []
    declared_ips = float(instance.resources.get("ips_public", 0))
    actual_ips = public_ips(vm)
    if declared_ips != actual_ips:
        diffs.append(ResourceDiff("ips_public", actual_ips, declared_ips))

    drive_type = str(instance.resources.get("drive_type", ""))
    if drive_type:
        declared_size = float(instance.resources.get("drive_size", 0)) / 1024
        actual_size = drive_capacity(vm, drive_type.upper())
        if declared_size != actual_size:
            diffs.append(ResourceDiff(f"drive_{drive_type.lower()}", actual_size, declared_size))
    return diffs
