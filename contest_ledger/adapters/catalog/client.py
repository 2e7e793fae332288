"""HTTP client for the hosted catalog backend."""

from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx
import structlog

from ...core.entities import CatalogPlayer
from ...core.enums import PlayerRole
from ...core.errors import CatalogError

logger = structlog.get_logger()


class HttpCatalogProvider:
    """Catalog provider that queries the hosted backend over HTTP.

    Expects `GET {base_url}/matches/{match_ref}/players` to return a JSON
    list of `{id, name, role, cost}` objects.
    """

    def __init__(self, base_url: str, request_timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        """Initialize the catalog client.

        Args:
            base_url: Base URL of the catalog backend
            request_timeout: Request timeout in seconds
            client: Optional preconfigured httpx client
        """
        self.base_url = base_url.rstrip("/")
        self.request_timeout = request_timeout
        self.client = client or httpx.AsyncClient(timeout=request_timeout)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.client.aclose()

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def list_players(self, match_ref: str) -> List[CatalogPlayer]:
        """Fetch the players selectable for a match.

        Raises:
            CatalogError: On transport errors, error responses or malformed payloads
        """
        url = f"{self.base_url}/matches/{quote(match_ref, safe='')}/players"
        try:
            response = await self.client.get(url, headers={"Accept": "application/json"})
        except httpx.RequestError as e:
            logger.error("Catalog request failed", url=url, error=str(e))
            raise CatalogError(f"Request failed: {e}") from e

        if response.status_code == 404:
            raise CatalogError(f"Match not found: {match_ref}")

        if response.status_code >= 400:
            logger.error(
                "Catalog API error",
                url=url,
                status_code=response.status_code,
                response=response.text,
            )
            raise CatalogError(f"API error: {response.status_code}")

        try:
            payload = response.json()
            players = [self._parse_player(item) for item in payload]
        except (ValueError, KeyError, TypeError) as e:
            raise CatalogError(f"Malformed catalog response for {match_ref}: {e}") from e

        logger.info("Fetched catalog", match_ref=match_ref, players=len(players))
        return players

    @staticmethod
    def _parse_player(item: Dict[str, Any]) -> CatalogPlayer:
        cost = int(item["cost"])
        if cost < 0:
            raise ValueError(f"negative cost for {item['id']}")
        return CatalogPlayer(
            id=str(item["id"]),
            name=item.get("name", ""),
            role=PlayerRole.from_string(item["role"]),
            cost=cost,
        )
