"""
Clients for the notebook server that owns the workspace files.

One adapter is picked at startup with select_backend(); each speaks exactly
one request/response contract.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from .error_handling import TransportError
from .models import DIRECTORY, FILE
from . import config

logger = logging.getLogger(__name__)


class Listing:
    """Normalized answer of a List call: flat records or a pre-built tree"""
    __slots__ = ['records', 'tree', 'counts', 'status']

    def __init__(self, records: Optional[List[Dict[str, Any]]] = None,
                 tree: Optional[Dict[str, Any]] = None,
                 counts: Optional[Dict[str, int]] = None,
                 status: Optional[Dict[str, Dict[str, Any]]] = None):
        self.records = records
        self.tree = tree
        self.counts = counts
        self.status = status

    @classmethod
    def from_payload(cls, payload: Any) -> 'Listing':
        if isinstance(payload, list):
            return cls(records=payload)
        if isinstance(payload, dict):
            if isinstance(payload.get("tree"), dict):
                return cls(tree=payload["tree"], counts=payload.get("counts"),
                           status=payload.get("status"))
            if isinstance(payload.get("notebooks"), list):
                return cls(records=payload["notebooks"])
            if payload.get("type") == DIRECTORY:
                return cls(tree=payload)
        raise TransportError("unexpected_shape", {"received": type(payload).__name__})


class Backend:
    """Base class: shared HTTP handling, one subclass per server contract"""
    version = None

    def __init__(self, base_url: str = None, timeout: float = None,
                 client: Optional[httpx.AsyncClient] = None):
        self.base_url = (base_url or config.BACKEND_URL).rstrip("/")
        self.client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout if timeout is not None else config.TIMEOUT,
        )

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        logger.debug(f"{method} {url} {kwargs}")
        try:
            response = await self.client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransportError("backend_rejected", {
                "url": url,
                "status": e.response.status_code,
                "body": e.response.text[:500],
            }) from e
        except httpx.HTTPError as e:
            raise TransportError("backend_unreachable", {"url": url, "error": str(e)}) from e

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise TransportError("invalid_json", {"url": url, "body": response.text[:500]}) from e

    async def list_files(self) -> Listing:
        raise NotImplementedError

    async def create(self, path: str, node_type: str = FILE) -> str:
        raise NotImplementedError

    async def move(self, process_id: str, new_path: str) -> None:
        raise NotImplementedError

    async def delete_file(self, process_id: str) -> None:
        raise NotImplementedError

    async def delete_folder(self, path: str, cascade: bool = False) -> None:
        raise NotImplementedError

    def edit_url(self, process_id: str) -> str:
        raise NotImplementedError

    async def close(self):
        await self.client.aclose()


class PlutoBackend(Backend):
    """Query-string contract of the notebook server: flat notebook records"""
    version = "v1"

    async def list_files(self) -> Listing:
        return Listing.from_payload(await self._request("GET", "/notebooklist"))

    async def create(self, path: str, node_type: str = FILE) -> str:
        endpoint = "/new" if node_type == FILE else "/new_folder"
        data = await self._request("POST", endpoint, params={"path": path})
        if isinstance(data, dict):
            return data.get("path") or data.get("shortpath") or path
        return path

    async def move(self, process_id: str, new_path: str) -> None:
        await self._request("POST", "/move", params={"id": process_id, "newpath": new_path})

    async def delete_file(self, process_id: str) -> None:
        await self._request("POST", "/shutdown", params={"id": process_id})

    async def delete_folder(self, path: str, cascade: bool = False) -> None:
        await self._request("POST", "/delete_folder",
                            params={"path": path, "cascade": "true" if cascade else "false"})

    def edit_url(self, process_id: str) -> str:
        return f"{self.base_url}/edit?id={process_id}"


class TreeBackend(Backend):
    """JSON contract that returns a pre-built tree with aggregate counts"""
    version = "v2"

    async def list_files(self) -> Listing:
        return Listing.from_payload(await self._request("GET", "/api/tree"))

    async def create(self, path: str, node_type: str = FILE) -> str:
        data = await self._request("POST", "/api/files", json={"path": path, "type": node_type})
        if isinstance(data, dict) and data.get("path"):
            return data["path"]
        return path

    async def move(self, process_id: str, new_path: str) -> None:
        await self._request("POST", "/api/files/move", json={"id": process_id, "new_path": new_path})

    async def delete_file(self, process_id: str) -> None:
        await self._request("DELETE", f"/api/files/{process_id}")

    async def delete_folder(self, path: str, cascade: bool = False) -> None:
        await self._request("DELETE", "/api/folders",
                            params={"path": path, "cascade": "true" if cascade else "false"})

    def edit_url(self, process_id: str) -> str:
        return f"{self.base_url}/edit?id={process_id}"


BACKENDS = {
    PlutoBackend.version: PlutoBackend,
    TreeBackend.version: TreeBackend,
}


def select_backend(version: str = None, base_url: str = None, timeout: float = None,
                   client: Optional[httpx.AsyncClient] = None) -> Backend:
    """Pick the adapter for the configured server version, once, at startup"""
    version = version or config.BACKEND_VERSION
    try:
        backend_cls = BACKENDS[version]
    except KeyError:
        raise ValueError(f"Unknown backend version {version!r}; expected one of {sorted(BACKENDS)}")
    logger.info(f"Using {backend_cls.__name__} ({version}) at {base_url or config.BACKEND_URL}")
    return backend_cls(base_url=base_url, timeout=timeout, client=client)
