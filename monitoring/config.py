import os
import socket
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()


@dataclass
class MQConfig:
    host: str = os.getenv("RABBITMQ_HOST", "localhost")
    port: int = int(os.getenv("RABBITMQ_PORT", "5672"))
    user: str = os.getenv("RABBITMQ_USER", "guest")
    password: str = os.getenv("RABBITMQ_PASSWORD", "guest")
    vhost: str = os.getenv("RABBITMQ_VHOST", "/")
    
    records_exchange: str = os.getenv("MQ_RECORDS_EXCHANGE", "records")
    events_exchange: str = os.getenv("MQ_EVENTS_EXCHANGE", "events")
    datas_exchange: str = os.getenv("MQ_DATAS_EXCHANGE", "datas")
    routing_key: str = os.getenv("MQ_ROUTING_KEY", "instances")
    
    reconnect_delay: float = float(os.getenv("MQ_RECONNECT_DELAY", "5.0"))
    
    @property
    def url(self) -> str:
        return f"amqp://{self.user}:{self.password}@{self.host}:{self.port}/{self.vhost}"


@dataclass
class APIConfig:
    base_url: str = os.getenv("BILLING_API_URL", "http://localhost:8000")
    api_prefix: str = "/api/v1"
    
    timeout: float = float(os.getenv("API_TIMEOUT", "30.0"))
    max_connections: int = int(os.getenv("API_MAX_CONNECTIONS", "100"))
    max_keepalive: int = int(os.getenv("API_MAX_KEEPALIVE", "20"))
    
    retry_count: int = int(os.getenv("API_RETRY_COUNT", "3"))
    retry_delay: float = float(os.getenv("API_RETRY_DELAY", "1.0"))
    
    @property
    def groups_url(self) -> str:
        return f"{self.api_prefix}/instances-groups"
    
    @property
    def instances_url(self) -> str:
        return f"{self.api_prefix}/instances"
    
    @property
    def flags_url(self) -> str:
        return f"{self.api_prefix}/monitoring/flags"


@dataclass
class PlatformConfig:
    base_url: str = os.getenv("PLATFORM_API_URL", "http://localhost:2634")
    user: str = os.getenv("PLATFORM_USER", "oneadmin")
    token: str = os.getenv("PLATFORM_TOKEN", "")
    
    timeout: float = float(os.getenv("PLATFORM_TIMEOUT", "30.0"))
    retry_count: int = int(os.getenv("PLATFORM_RETRY_COUNT", "3"))
    retry_delay: float = float(os.getenv("PLATFORM_RETRY_DELAY", "1.0"))


@dataclass
class MonitoringConfig:
    interval: int = int(os.getenv("MONITORING_INTERVAL", "300"))
    max_concurrent: int = int(os.getenv("MONITORING_MAX_CONCURRENT", "10"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    metrics_interval: int = int(os.getenv("METRICS_INTERVAL", "60"))
    worker_id: str = os.getenv("WORKER_ID", socket.gethostname())


mq_config = MQConfig()
api_config = APIConfig()
platform_config = PlatformConfig()
monitoring_config = MonitoringConfig()
