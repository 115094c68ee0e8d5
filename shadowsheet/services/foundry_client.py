import httpx
from typing import Any, Dict, List, Optional
from ..config import settings
from ..models.advancement import Item
from ..utils.logger import logger


class ExternalApplyError(RuntimeError):
    """The document/actor service rejected a write."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class FoundryClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.FOUNDRY_URL).rstrip("/")
        headers = {}
        key = api_key if api_key is not None else settings.FOUNDRY_API_KEY
        if key:
            headers["x-api-key"] = key
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=settings.FOUNDRY_TIMEOUT,
            transport=transport,
        )

    async def test_connection(self) -> bool:
        try:
            resp = await self.client.get("/api/status")
            resp.raise_for_status()
            logger.info(f"Foundry connection successful: {self.base_url}")
            return True
        except Exception as e:
            logger.warning(f"Foundry connection failed: {e}")
            return False

    async def fetch_document(self, uuid: str) -> Optional[Dict[str, Any]]:
        resp = await self.client.get("/api/documents", params={"uuid": uuid})
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return resp.json()

    async def get_actor(self, actor_id: str) -> Optional[Dict[str, Any]]:
        resp = await self.client.get(f"/api/actors/{actor_id}")
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return resp.json()

    async def _write(self, method: str, url: str, payload: Any) -> Any:
        try:
            resp = await self.client.request(method, url, json=payload)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"Foundry rejected {method} {url}: {e.response.status_code} {e.response.text}")
            raise ExternalApplyError(
                f"{method} {url} failed with status {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"Foundry {method} {url} error: {e}")
            raise ExternalApplyError(f"{method} {url} failed: {e}") from e
        return resp.json() if resp.content else None

    async def create_actor(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return await self._write("POST", "/api/actors", data)

    async def update_actor(self, actor_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        """Apply a ``{"system.level.value": 3, ...}`` style field-path map."""
        return await self._write("PATCH", f"/api/actors/{actor_id}", updates)

    async def create_actor_items(self, actor_id: str, items: List[Item]) -> List[Dict[str, Any]]:
        payload = {"items": [i.to_payload() if isinstance(i, Item) else i for i in items]}
        created = await self._write("POST", f"/api/actors/{actor_id}/items", payload)
        logger.info(f"Created {len(items)} items on actor {actor_id}")
        return created or []

    async def close(self):
        await self.client.aclose()
