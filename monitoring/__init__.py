from .driver import MonitoringDriver, InstanceBillingResult
from .publisher import BusPublisher, PublishError
from .api_client import BillingAPIClient, PlatformClient, PlatformError
from .config import mq_config, api_config, platform_config, monitoring_config

__all__ = [
    "MonitoringDriver",
    "InstanceBillingResult",
    "BusPublisher",
    "PublishError",
    "BillingAPIClient",
    "PlatformClient",
    "PlatformError",
    "mq_config",
    "api_config",
    "platform_config",
    "monitoring_config",
]
