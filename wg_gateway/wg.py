"""
WireGuard management service client.
Client lifecycle (keys, peer configs, QR codes) lives in an external service;
the gateway only forwards to it, and asks it to reload after a port change.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from .errors import WireGuardError

logger = logging.getLogger(__name__)


class WireGuardService(ABC):
    """Operations the gateway needs from the WireGuard management service."""

    @abstractmethod
    async def save_config(self) -> None:
        """Re-render the interface config and reload the live interface."""

    @abstractmethod
    async def get_clients(self) -> List[dict]: ...

    @abstractmethod
    async def get_client(self, client_id: str) -> dict: ...

    @abstractmethod
    async def create_client(self, name: str) -> dict: ...

    @abstractmethod
    async def delete_client(self, client_id: str) -> Any: ...

    @abstractmethod
    async def enable_client(self, client_id: str) -> Any: ...

    @abstractmethod
    async def disable_client(self, client_id: str) -> Any: ...

    @abstractmethod
    async def update_client_name(self, client_id: str, name: str) -> Any: ...

    @abstractmethod
    async def update_client_address(self, client_id: str, address: str) -> Any: ...

    @abstractmethod
    async def get_client_configuration(self, client_id: str) -> str: ...

    @abstractmethod
    async def get_client_qrcode_svg(self, client_id: str) -> str: ...

    async def aclose(self) -> None:
        pass


class HttpWireGuardService(WireGuardService):
    """
    WireGuardService backed by the management service's REST API.
    Upstream HTTP errors keep their status code; transport errors map to 502.
    """

    def __init__(self, base_url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def _request(self, method: str, path: str, json: Dict[str, Any] = None) -> httpx.Response:
        try:
            response = await self._client.request(method, path, json=json)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            detail = _error_message(e.response)
            logger.warning(f"WireGuard service {method} {path} failed: {e.response.status_code} {detail}")
            raise WireGuardError(detail, e.response.status_code) from e
        except httpx.RequestError as e:
            logger.error(f"WireGuard service unreachable at {self.base_url}: {e}")
            raise WireGuardError(f"WireGuard service unreachable: {e}") from e
        return response

    async def _json(self, method: str, path: str, json: Dict[str, Any] = None) -> Any:
        response = await self._request(method, path, json=json)
        if not response.content:
            return None
        return response.json()

    async def save_config(self) -> None:
        await self._request("POST", "/config/reload")
        logger.info("WireGuard interface reloaded")

    async def get_clients(self) -> List[dict]:
        return await self._json("GET", "/clients")

    async def get_client(self, client_id: str) -> dict:
        return await self._json("GET", f"/clients/{client_id}")

    async def create_client(self, name: str) -> dict:
        return await self._json("POST", "/clients", {"name": name})

    async def delete_client(self, client_id: str) -> Any:
        return await self._json("DELETE", f"/clients/{client_id}")

    async def enable_client(self, client_id: str) -> Any:
        return await self._json("POST", f"/clients/{client_id}/enable")

    async def disable_client(self, client_id: str) -> Any:
        return await self._json("POST", f"/clients/{client_id}/disable")

    async def update_client_name(self, client_id: str, name: str) -> Any:
        return await self._json("PUT", f"/clients/{client_id}/name", {"name": name})

    async def update_client_address(self, client_id: str, address: str) -> Any:
        return await self._json("PUT", f"/clients/{client_id}/address", {"address": address})

    async def get_client_configuration(self, client_id: str) -> str:
        response = await self._request("GET", f"/clients/{client_id}/configuration")
        return response.text

    async def get_client_qrcode_svg(self, client_id: str) -> str:
        response = await self._request("GET", f"/clients/{client_id}/qrcode.svg")
        return response.text

    async def aclose(self) -> None:
        await self._client.aclose()


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("error") or body.get("detail") or body)
    return str(body)
