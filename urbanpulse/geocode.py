"""Reverse geocoding of report coordinates.

Resolution is best-effort: ``NominatimResolver.resolve`` raises
``ResolveFailed`` on any transport error, timeout, non-2xx response or missing
``display_name``, and callers substitute :func:`format_coordinates`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import httpx

from .config import Settings, get_settings
from .errors import ResolveFailed

logger = logging.getLogger("urbanpulse.geocode")


def format_coordinates(lat: float, lng: float) -> str:
    return f"{lat:.4f}, {lng:.4f}"


class GeocodeResolver:
    async def resolve(self, lat: float, lng: float) -> str:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


class NominatimResolver(GeocodeResolver):
    """OpenStreetMap Nominatim ``/reverse`` lookups over a pooled httpx client."""

    def __init__(
        self,
        base_url: str,
        user_agent: str,
        timeout: float,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._headers = {"User-Agent": user_agent, "Accept": "application/json"}
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout, connect=min(self._timeout, 5.0)))
        return self._client

    async def resolve(self, lat: float, lng: float) -> str:
        url = f"{self._base_url}/reverse"
        params = {"lat": lat, "lon": lng, "format": "json"}
        try:
            resp = await asyncio.wait_for(
                self._get_client().get(url, params=params, headers=self._headers),
                timeout=self._timeout,
            )
            resp.raise_for_status()
            data = resp.json()
        except asyncio.TimeoutError as exc:
            raise ResolveFailed(f"Reverse geocoding timed out after {self._timeout:.1f}s") from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise ResolveFailed(f"Reverse geocoding failed: {exc}") from exc

        address = data.get("display_name") if isinstance(data, dict) else None
        if not address:
            raise ResolveFailed("Reverse geocoding returned no display_name")
        return address

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


def build_resolver(settings: Optional[Settings] = None) -> GeocodeResolver:
    settings = settings or get_settings()
    return NominatimResolver(
        base_url=settings.geocoder_url,
        user_agent=settings.geocoder_user_agent,
        timeout=settings.geocode_timeout_seconds,
    )


__all__ = ["GeocodeResolver", "NominatimResolver", "format_coordinates", "build_resolver"]
