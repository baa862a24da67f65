import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional

from .config import mq_config, api_config, platform_config, monitoring_config
from .driver import MonitoringDriver
from .publisher import BusPublisher
from .api_client import APIError, get_api_client, get_platform_client, close_api_client


logging.basicConfig(
    level=getattr(logging, monitoring_config.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


class GracefulShutdown:
    def __init__(self):
        self.shutdown_event = asyncio.Event()
        self._publisher: Optional[BusPublisher] = None

    def set_publisher(self, publisher: BusPublisher):
        self._publisher = publisher

    async def shutdown(self, sig=None):
        if self.shutdown_event.is_set():
            return
        if sig:
            logger.info(f"Received signal {sig.name}")

        logger.info("Initiating graceful shutdown...")

        if self._publisher:
            await self._publisher.close()

        await close_api_client()
        self.shutdown_event.set()


async def _build_driver(shutdown_handler: GracefulShutdown) -> MonitoringDriver:
    api_client = get_api_client()

    logger.info("Checking API health...")
    if not await api_client.health_check():
        logger.error(f"API not reachable at {api_config.base_url}")
        logger.info("Starting anyway, will retry connections...")
    else:
        logger.info("API is healthy")

    publisher = BusPublisher(mq_config)
    shutdown_handler.set_publisher(publisher)
    await publisher.connect()

    return MonitoringDriver(
        api_client=api_client,
        platform=get_platform_client(),
        publisher=publisher
    )


async def run_monitoring():
    shutdown_handler = GracefulShutdown()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda s=sig: asyncio.create_task(shutdown_handler.shutdown(s))
        )

    metrics_task = None
    try:
        driver = await _build_driver(shutdown_handler)
        metrics_task = asyncio.create_task(log_metrics_periodically(driver, monitoring_config.metrics_interval))

        while not shutdown_handler.shutdown_event.is_set():
            await driver.run_cycle()
            try:
                await asyncio.wait_for(
                    shutdown_handler.shutdown_event.wait(),
                    timeout=monitoring_config.interval
                )
            except asyncio.TimeoutError:
                pass
    except Exception as e:
        logger.error(f"Monitoring error: {e}")
        raise
    finally:
        if metrics_task:
            metrics_task.cancel()
        await shutdown_handler.shutdown()


async def run_once():
    shutdown_handler = GracefulShutdown()
    try:
        driver = await _build_driver(shutdown_handler)
        results = await driver.run_cycle()
        return all(r.success for r in results)
    finally:
        await shutdown_handler.shutdown()


async def run_renew(instance_uuid: str) -> bool:
    shutdown_handler = GracefulShutdown()
    try:
        driver = await _build_driver(shutdown_handler)
        try:
            instance = await driver.api_client.get_instance(instance_uuid)
        except APIError as e:
            logger.error(f"Failed to load instance {instance_uuid}: {e}")
            return False

        result = await driver.renew_instance(instance)
        if not result.success:
            logger.error(f"Renew of {instance_uuid} failed: {result.error}")
        return result.success
    finally:
        await shutdown_handler.shutdown()


async def log_metrics_periodically(driver: MonitoringDriver, interval: int = 60):
    while True:
        await asyncio.sleep(interval)
        metrics = driver.get_metrics()
        logger.info(
            f"Metrics - Cycles: {metrics['cycles']}, "
            f"Processed: {metrics['instances_processed']}, "
            f"Failed: {metrics['failed']}, "
            f"Records: {metrics['records_published']}, "
            f"Avg Time: {metrics['avg_processing_time_ms']}ms"
        )


async def check_health():
    client = get_api_client()
    healthy = await client.health_check()
    await close_api_client()
    return healthy


def main():
    parser = argparse.ArgumentParser(
        description="VM billing monitor"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("start", help="Run monitoring cycles until stopped")
    subparsers.add_parser("once", help="Run a single monitoring cycle")
    renew_parser = subparsers.add_parser("renew", help="Bill the next period of an instance now")
    renew_parser.add_argument("instance", help="Instance UUID")
    subparsers.add_parser("health", help="Check API health")

    args = parser.parse_args()

    if args.command == "start":
        logger.info("Starting billing monitor...")
        logger.info(f"RabbitMQ: {mq_config.host}:{mq_config.port}")
        logger.info(f"API: {api_config.base_url}")
        logger.info(f"Platform: {platform_config.base_url}")
        logger.info(f"Interval: {monitoring_config.interval}s")
        asyncio.run(run_monitoring())

    elif args.command == "once":
        ok = asyncio.run(run_once())
        if not ok:
            sys.exit(1)

    elif args.command == "renew":
        ok = asyncio.run(run_renew(args.instance))
        if not ok:
            sys.exit(1)

    elif args.command == "health":
        healthy = asyncio.run(check_health())
        if healthy:
            print(f"✓ API at {api_config.base_url} is healthy")
        else:
            print(f"✗ API at {api_config.base_url} is not reachable")
            sys.exit(1)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
