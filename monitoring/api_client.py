import asyncio
import logging
from typing import Optional, Dict, Any, List
from dataclasses import dataclass
from enum import Enum

import httpx
from pydantic import ValidationError

from models.schemas import Instance, InstancesGroup, InstanceStatus, VMDescriptor
from .config import api_config, APIConfig, platform_config, PlatformConfig

logger = logging.getLogger(__name__)


class APIError(Exception):
    def __init__(self, status_code: int, message: str, response: Optional[Dict] = None):
        self.status_code = status_code
        self.message = message
        self.response = response
        super().__init__(f"API Error {status_code}: {message}")


class PlatformError(APIError):
    pass


class APIResult(Enum):
    SUCCESS = "success"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    ERROR = "error"


@dataclass
class APIResponse:
    result: APIResult
    status_code: int
    data: Optional[Any] = None
    error: Optional[str] = None


class HTTPClient:
    def __init__(self, base_url: str, timeout: float, retry_count: int, retry_delay: float,
                 headers: Optional[Dict[str, str]] = None, limits: Optional[httpx.Limits] = None):
        self.base_url = base_url
        self.timeout = timeout
        self.retry_count = retry_count
        self.retry_delay = retry_delay
        self.headers = headers or {}
        self.limits = limits
        self._client: Optional[httpx.AsyncClient] = None
        self._lock = asyncio.Lock()

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            async with self._lock:
                if self._client is None or self._client.is_closed:
                    self._client = httpx.AsyncClient(
                        base_url=self.base_url,
                        timeout=httpx.Timeout(self.timeout),
                        limits=self.limits or httpx.Limits(),
                        headers=self.headers,
                        http2=True
                    )
        return self._client

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def _to_response(response: httpx.Response) -> APIResponse:
        status_code = response.status_code
        if status_code == 404:
            return APIResponse(APIResult.NOT_FOUND, status_code, error="Resource not found")

        try:
            body = response.json() if response.content else None
        except ValueError:
            body = {"detail": response.text or "Unknown error"}

        if status_code == 409:
            return APIResponse(APIResult.CONFLICT, status_code, data=body)
        if status_code >= 400:
            detail = body.get("detail", body) if isinstance(body, dict) else body
            return APIResponse(APIResult.ERROR, status_code, error=str(detail))
        return APIResponse(APIResult.SUCCESS, status_code, data=body)

    async def _request(
        self,
        method: str,
        url: str,
        json: Optional[Any] = None,
        retry_count: int = None
    ) -> APIResponse:
        retry_count = retry_count or self.retry_count
        client = await self._get_client()

        error = "Max retries exceeded"
        for attempt in range(retry_count):
            try:
                response = await client.request(method, url, json=json)
                return self._to_response(response)

            except (httpx.TimeoutException, httpx.ConnectError) as e:
                kind = "Request timeout" if isinstance(e, httpx.TimeoutException) else "Connection error"
                logger.warning(f"{kind} (attempt {attempt + 1}/{retry_count}): {method} {url}")
                error = f"{kind}: {e}"
                if attempt < retry_count - 1:
                    await asyncio.sleep(self.retry_delay * (attempt + 1))

            except httpx.HTTPError as e:
                logger.error(f"Unexpected HTTP error on {method} {url}: {e}")
                return APIResponse(APIResult.ERROR, 0, error=str(e))

        return APIResponse(APIResult.ERROR, 0, error=error)

    async def health_check(self) -> bool:
        try:
            response = await self._request("GET", "/health", retry_count=1)
            return response.result == APIResult.SUCCESS
        except Exception:
            return False


class BillingAPIClient(HTTPClient):
    def __init__(self, config: APIConfig = None):
        self.config = config or api_config
        super().__init__(
            base_url=self.config.base_url,
            timeout=self.config.timeout,
            retry_count=self.config.retry_count,
            retry_delay=self.config.retry_delay,
            limits=httpx.Limits(
                max_connections=self.config.max_connections,
                max_keepalive_connections=self.config.max_keepalive
            )
        )

    async def list_instances_groups(self) -> List[InstancesGroup]:
        response = await self._request("GET", self.config.groups_url)
        if response.result != APIResult.SUCCESS:
            raise APIError(response.status_code, response.error or "Failed to list instances groups")

        groups = []
        for raw in response.data or []:
            try:
                groups.append(InstancesGroup.model_validate(raw))
            except ValidationError as e:
                logger.warning(f"Skipping malformed instances group {raw.get('uuid')}: {e}")
        return groups

    async def update_instance_data(self, instance_uuid: str, data: Dict[str, Any]) -> APIResponse:
        return await self._request(
            "PATCH",
            f"{self.config.instances_url}/{instance_uuid}/data",
            json={"data": data}
        )

    async def update_instance_status(self, instance_uuid: str, status: InstanceStatus) -> APIResponse:
        return await self._request(
            "PATCH",
            f"{self.config.instances_url}/{instance_uuid}/status",
            json={"status": status.value}
        )

    async def get_instance(self, instance_uuid: str) -> Instance:
        response = await self._request("GET", f"{self.config.instances_url}/{instance_uuid}")
        if response.result != APIResult.SUCCESS:
            raise APIError(response.status_code, response.error or f"Failed to get instance {instance_uuid}")
        try:
            return Instance.model_validate(response.data)
        except ValidationError as e:
            raise APIError(response.status_code, f"Malformed instance {instance_uuid}: {e}")

    async def acquire_flag(self, group_uuid: str, cycle: int, owner: Optional[str] = None) -> APIResponse:
        return await self._request(
            "POST",
            self.config.flags_url,
            json={"group": group_uuid, "cycle": cycle, "owner": owner},
            retry_count=1
        )


class PlatformClient(HTTPClient):
    def __init__(self, config: PlatformConfig = None):
        self.config = config or platform_config
        headers = {}
        if self.config.token:
            headers["Authorization"] = f"Bearer {self.config.token}"
        super().__init__(
            base_url=self.config.base_url,
            timeout=self.config.timeout,
            retry_count=self.config.retry_count,
            retry_delay=self.config.retry_delay,
            headers=headers
        )

    async def get_vm(self, vmid: int) -> VMDescriptor:
        response = await self._request("GET", f"/vms/{vmid}")
        if response.result != APIResult.SUCCESS:
            raise PlatformError(response.status_code, response.error or f"Failed to get VM {vmid}")
        try:
            return VMDescriptor.model_validate(response.data)
        except ValidationError as e:
            raise PlatformError(response.status_code, f"Malformed VM {vmid}: {e}")

    async def get_vm_id_by_name(self, name: str) -> int:
        response = await self._request("GET", f"/vms/by-name/{name}")
        if response.result != APIResult.SUCCESS or not response.data or "id" not in response.data:
            raise PlatformError(response.status_code, response.error or f"VM {name} not found")
        return int(response.data["id"])

    async def _vm_action(self, vmid: int, action: str):
        response = await self._request("POST", f"/vms/{vmid}/{action}", retry_count=1)
        if response.result != APIResult.SUCCESS:
            raise PlatformError(response.status_code, response.error or f"Failed to {action} VM {vmid}")

    async def suspend_vm(self, vmid: int):
        await self._vm_action(vmid, "suspend")

    async def resume_vm(self, vmid: int):
        await self._vm_action(vmid, "resume")


_client_instance: Optional[BillingAPIClient] = None
_platform_instance: Optional[PlatformClient] = None


def get_api_client() -> BillingAPIClient:
    global _client_instance
    if _client_instance is None:
        _client_instance = BillingAPIClient()
    return _client_instance


def get_platform_client() -> PlatformClient:
    global _platform_instance
    if _platform_instance is None:
        _platform_instance = PlatformClient()
    return _platform_instance


async def close_api_client():
    global _client_instance, _platform_instance
    if _client_instance:
        await _client_instance.close()
        _client_instance = None
    if _platform_instance:
        await _platform_instance.close()
        _platform_instance = None
