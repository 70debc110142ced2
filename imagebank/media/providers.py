"""
External stock-photo providers.
Each provider normalizes its API response into ImageSearchResult.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from ..bank.types import Attribution
from ..util.logging import logger, redact_query_params
from .types import ImageSearchResult, orientation_of


class ProviderError(Exception):
    """Raised when a provider API call fails."""

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{provider} API error: {message}")
        self.provider = provider
        self.status_code = status_code


class MediaProvider(ABC):
    """Interface for image search providers."""

    name: str

    def __init__(self, timeout: float = 20.0, client: Optional[httpx.AsyncClient] = None):
        self.timeout = timeout
        self._client = client

    async def _get(self, url: str, params: Dict[str, Any], headers: Dict[str, str]) -> Any:
        """GET a JSON document, raising ProviderError on transport or HTTP failures."""
        try:
            if self._client is not None:
                response = await self._client.get(url, params=params, headers=headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(url, params=params, headers=headers)
        except httpx.HTTPError as e:
            raise ProviderError(self.name, f"request failed: {e}") from e

        if response.status_code != 200:
            logger.log_media_event("provider_http_error", "failed", {
                "provider": self.name,
                "status": response.status_code,
                "url": redact_query_params(str(response.url)),
            })
            raise ProviderError(self.name, f"HTTP {response.status_code}", response.status_code)

        return response.json()

    @abstractmethod
    async def search(self, query: str, orientation: Optional[str] = None, count: Optional[int] = None) -> List[ImageSearchResult]:
        """Search the provider; orientation is horizontal, vertical or square."""
        pass


class UnsplashProvider(MediaProvider):
    name = "unsplash"
    base_url = "https://api.unsplash.com"

    ORIENTATION_PARAM = {"horizontal": "landscape", "vertical": "portrait", "square": "squarish"}

    def __init__(self, access_key: str, **kwargs):
        super().__init__(**kwargs)
        self.access_key = access_key

    async def search(self, query: str, orientation: Optional[str] = None, count: Optional[int] = None) -> List[ImageSearchResult]:
        params = {"query": query, "per_page": count or 5}
        if orientation:
            params["orientation"] = self.ORIENTATION_PARAM[orientation]

        data = await self._get(
            f"{self.base_url}/search/photos",
            params,
            {"Authorization": f"Client-ID {self.access_key}"},
        )

        results = []
        for photo in data.get("results", []):
            results.append(ImageSearchResult(
                id=str(photo["id"]),
                title=photo.get("alt_description") or photo.get("description") or "Untitled",
                description=photo.get("description"),
                preview_url=photo["urls"]["small"],
                display_url=photo["urls"]["regular"],
                width=int(photo.get("width", 0)),
                height=int(photo.get("height", 0)),
                provider=self.name,
                attribution=Attribution(
                    name=photo["user"]["name"],
                    url=photo["user"]["links"]["html"],
                    source_url=photo["links"]["html"],
                ),
            ))
        return results


class PexelsProvider(MediaProvider):
    name = "pexels"
    base_url = "https://api.pexels.com/v1"

    ORIENTATION_PARAM = {"horizontal": "landscape", "vertical": "portrait", "square": "square"}

    def __init__(self, api_key: str, **kwargs):
        super().__init__(**kwargs)
        self.api_key = api_key

    async def search(self, query: str, orientation: Optional[str] = None, count: Optional[int] = None) -> List[ImageSearchResult]:
        params = {"query": query, "per_page": count or 5}
        if orientation:
            params["orientation"] = self.ORIENTATION_PARAM[orientation]

        data = await self._get(f"{self.base_url}/search", params, {"Authorization": self.api_key})

        results = []
        for photo in data.get("photos", []):
            results.append(ImageSearchResult(
                id=str(photo["id"]),
                title=photo.get("alt") or "Untitled",
                preview_url=photo["src"]["medium"],
                display_url=photo["src"]["large"],
                width=int(photo.get("width", 0)),
                height=int(photo.get("height", 0)),
                provider=self.name,
                attribution=Attribution(
                    name=photo.get("photographer", "Unknown"),
                    url=photo.get("photographer_url"),
                    source_url=photo.get("url", ""),
                ),
            ))
        return results


class GettyProvider(MediaProvider):
    """Getty Images creative search.

    Getty's orientation filter is loose, so results are re-checked client-side
    against the requested orientation.
    """

    name = "getty"

    def __init__(self, api_key: str, base_url: str = "https://api.gettyimages.com/v3", **kwargs):
        super().__init__(**kwargs)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    async def search(self, query: str, orientation: Optional[str] = None, count: Optional[int] = None) -> List[ImageSearchResult]:
        params = {
            "phrase": query,
            "page_size": count or 20,
            "file_types": "jpg",
            "graphical_styles": "photography",
            "minimum_size": "large",
            "fields": "id,title,display_set,max_dimensions",
        }
        if orientation:
            params["orientations"] = orientation

        data = await self._get(
            f"{self.base_url}/search/images/creative",
            params,
            {"Api-Key": self.api_key, "Accept": "application/json"},
        )

        results = []
        for image in data.get("images", []):
            sizes = {d.get("name"): d.get("uri") for d in image.get("display_sizes", [])}
            display_url = sizes.get("comp") or sizes.get("preview") or next(iter(sizes.values()), None)
            if not display_url:
                continue

            dimensions = image.get("max_dimensions") or {}
            results.append(ImageSearchResult(
                id=str(image["id"]),
                title=image.get("title") or f"Getty Image {image['id']}",
                preview_url=sizes.get("preview") or sizes.get("thumb") or display_url,
                display_url=display_url,
                width=int(dimensions.get("width", 0)),
                height=int(dimensions.get("height", 0)),
                provider=self.name,
                attribution=Attribution(
                    name="Getty Images",
                    source_url=f"https://www.gettyimages.com/detail/{image['id']}",
                ),
            ))

        if orientation:
            results = [r for r in results if orientation_of(r.width, r.height) == orientation]
        return results


async def download_image(url: str, timeout: float = 20.0) -> bytes:
    """Fetch image bytes for rendition mirroring and vision analysis."""
    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
        response = await client.get(url)
    if response.status_code != 200:
        raise ProviderError("download", f"HTTP {response.status_code} for {redact_query_params(url)}", response.status_code)
    return response.content
