"""Image generation client with placeholder fallback."""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional, Sequence

import httpx

from ..config import config
from ..errors import ImageServiceError

logger = logging.getLogger(__name__)

PLACEHOLDER_BASE = "https://picsum.photos/seed"

PLACEHOLDER_SIZES: dict[str, tuple[int, int]] = {
    "9:16": (540, 960),
    "16:9": (960, 540),
    "1:1": (720, 720),
}


class ImageService(ABC):
    """Contract of the remote image generation service."""

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        style: str,
        aspect_ratio: str,
        reference_urls: Sequence[str] = (),
    ) -> str:
        """Generate an image and return its locator.

        Raises:
            Exception: Any failure; the ImageClient turns it into a placeholder.
        """
        ...


class HttpImageService(ImageService):
    """Image generation through the HTTP image proxy."""

    DEFAULT_TIMEOUT = 120.0

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize the image service.

        Args:
            base_url: Proxy base URL. Defaults to IMAGE_SERVICE_URL env var.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport, used by tests.
        """
        self._base_url = (base_url or config.image_service_url).rstrip("/")
        self._timeout = timeout
        self._transport = transport

    @property
    def endpoint(self) -> str:
        return f"{self._base_url}/api/generate-image"

    async def generate(
        self,
        prompt: str,
        style: str,
        aspect_ratio: str,
        reference_urls: Sequence[str] = (),
    ) -> str:
        payload = {
            "prompt": prompt,
            "aspect_ratio": aspect_ratio,
            "style": style,
        }
        if reference_urls:
            payload["reference_images"] = list(reference_urls)

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(self.endpoint, json=payload)

        if response.status_code != 200:
            raise ImageServiceError(
                f"Image generation failed: {response.status_code}: {response.text[:500]}"
            )

        data = response.json()
        url = data.get("url") or data.get("image_url")
        if not url:
            raise ImageServiceError("Image generation response contained no url")
        return url


@dataclass
class ImageResult:
    """Result of one image generation.

    ``is_placeholder`` is set when the service failed and ``url`` points at a
    stand-in image; ``error`` then holds the failure.
    """

    url: str
    prompt: str
    is_placeholder: bool = False
    error: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)


def placeholder_url(seed: int, aspect_ratio: str) -> str:
    """Return the placeholder image locator for a seed and aspect ratio."""
    width, height = PLACEHOLDER_SIZES.get(aspect_ratio, PLACEHOLDER_SIZES["9:16"])
    return f"{PLACEHOLDER_BASE}/{seed}/{width}/{height}"


class ImageClient:
    """Calls the image service and degrades to a placeholder on failure.

    Failures never propagate: the batch always gets a locator to continue
    with, and the returned result is flagged so callers can tell a placeholder
    from a generated image.
    """

    def __init__(
        self,
        service: ImageService,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the client.

        Args:
            service: Image service to call.
            clock: Returns the current time in seconds; seeds placeholders.
        """
        self._service = service
        self._clock = clock

    async def generate(
        self,
        prompt: str,
        style: str,
        aspect_ratio: str = "9:16",
        scene_id: Optional[str] = None,
        reference_urls: Sequence[str] = (),
    ) -> ImageResult:
        """Generate an image for a compiled prompt.

        Args:
            prompt: Compiled image prompt.
            style: Visual style name.
            aspect_ratio: Image aspect ratio ('9:16', '16:9', '1:1').
            scene_id: Scene being generated, for log correlation.
            reference_urls: Optional reference images.

        Returns:
            ImageResult, flagged as a placeholder if the service failed.
        """
        label = scene_id or "image"
        try:
            logger.info(f"Generating image for {label}: {prompt[:50]}...")
            url = await self._service.generate(
                prompt=prompt,
                style=style,
                aspect_ratio=aspect_ratio,
                reference_urls=reference_urls,
            )
            logger.info(f"Image ready for {label}: {url}")
            return ImageResult(url=url, prompt=prompt)

        except Exception as e:
            seed = int(self._clock() * 1000)
            fallback = placeholder_url(seed, aspect_ratio)
            logger.warning(
                f"Image generation failed for {label}: {e}. Using placeholder {fallback}"
            )
            return ImageResult(
                url=fallback,
                prompt=prompt,
                is_placeholder=True,
                error=str(e) or type(e).__name__,
            )
