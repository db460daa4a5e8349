import httpx
import os
import logging
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

PEXELS_API_KEY = os.getenv("PEXELS_API_KEY", "")
PEXELS_SEARCH_URL = "https://api.pexels.com/v1/search"


class ImageLookupFailure(Exception):
    """Raised internally when the photo search cannot return a usable photo."""


@dataclass
class StoryImage:
    url: str
    alt: str


# Reusable client for connection pooling
_client = None

async def get_client():
    global _client
    if _client is None:
        _client = httpx.AsyncClient(timeout=30.0)
    return _client


async def search_photo(query: str) -> Optional[StoryImage]:
    """Run a single-result keyword search. Errors raise ImageLookupFailure."""
    if not PEXELS_API_KEY:
        raise ImageLookupFailure("No PEXELS_API_KEY set")

    client = await get_client()
    try:
        response = await client.get(
            PEXELS_SEARCH_URL,
            params={"query": query, "per_page": 1},
            headers={"Authorization": PEXELS_API_KEY}
        )
        response.raise_for_status()
        data = response.json()
    except (httpx.HTTPError, ValueError) as e:
        raise ImageLookupFailure(f"Failed to fetch image: {e}") from e

    photos = data.get("photos") if isinstance(data, dict) else None
    if photos is None:
        return None
    if not isinstance(photos, list):
        raise ImageLookupFailure(f"Unexpected photos value: {type(photos).__name__}")
    if not photos:
        return None

    try:
        photo = photos[0]
        return StoryImage(url=photo["src"]["large2x"], alt=photo.get("alt") or "")
    except (KeyError, TypeError, AttributeError) as e:
        raise ImageLookupFailure(f"Unexpected photo shape: {e}") from e


async def find_image(query: str) -> Optional[StoryImage]:
    """Find an illustration for the prompt, or None. Never raises."""
    try:
        image = await search_photo(query)
    except ImageLookupFailure as e:
        logger.warning(f"Image lookup skipped: {e}")
        return None

    if image:
        logger.info(f"Found story image: {image.url}")
    else:
        logger.info(f"No image found for '{query[:60]}'")
    return image
