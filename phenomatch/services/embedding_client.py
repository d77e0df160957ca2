"""
Embedding Service Client

HTTP client for the face-embedding service. The service turns an image
URL into a fixed-dimensionality ArcFace vector:

    POST {base_url}/api/embeddings/generate   {"imageUrl": "..."}
        -> {"embedding": [...], "dimensions": 512, "metadata": {...}}
    GET  {base_url}/health
        -> {"status": "healthy", "matcher_loaded": true}

This is the mandatory signal, so every failure is raised as
EmbeddingSignalError. A failed health probe raises ServiceUnavailableError.
"""

import logging
import os

import httpx
import numpy as np
from pydantic import ValidationError

from phenomatch.errors import EmbeddingSignalError, ServiceUnavailableError
from phenomatch.matching.interfaces import EmbeddingProvider
from phenomatch.services.payloads import parse_signal_payload

logger = logging.getLogger(__name__)


class EmbeddingServiceClient(EmbeddingProvider):
    """
    Generate image embeddings through the embedding service.

    Args:
        client: Shared httpx.AsyncClient (owned by the caller).
        config: Dictionary with optional keys:
            - base_url: Service root (default http://127.0.0.1:5001)
            - timeout_sec: Request timeout (default 30)
            - dimensions: Expected vector length (default 512)
            - health_check: Probe /health before embedding (default False)
            - health_timeout_sec: Probe timeout (default 5)
    """

    def __init__(self, client: httpx.AsyncClient, config: dict = None):
        if config is None:
            config = {}
        self.client = client
        self.base_url = (
            os.environ.get("EMBEDDING_SERVICE_URL")
            or config.get("base_url", "http://127.0.0.1:5001")
        ).rstrip("/")
        self.timeout_sec = float(config.get("timeout_sec", 30.0))
        self.dimensions = int(config.get("dimensions", 512))
        self.health_check = bool(config.get("health_check", False))
        self.health_timeout_sec = float(config.get("health_timeout_sec", 5.0))

    async def check_health(self) -> bool:
        """Return True if the service reports itself healthy and loaded."""
        try:
            response = await self.client.get(
                f"{self.base_url}/health", timeout=self.health_timeout_sec
            )
            if not response.is_success:
                return False
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Embedding service health check failed: {e}")
            return False

        if not isinstance(data, dict):
            logger.warning(f"Embedding service health check returned a non-object body: {data!r:.100}")
            return False
        return data.get("status") == "healthy" and data.get("matcher_loaded") is True

    async def embed(self, image_ref: str) -> np.ndarray:
        """
        Generate the embedding for one image.

        Returns:
            (D,) float32 vector.

        Raises:
            ServiceUnavailableError: If the health probe is enabled and fails.
            EmbeddingSignalError: On transport errors, non-2xx responses,
                invalid payloads or a dimension mismatch.
        """
        if self.health_check and not await self.check_health():
            raise ServiceUnavailableError(
                f"Embedding service at {self.base_url} is not healthy"
            )

        try:
            response = await self.client.post(
                f"{self.base_url}/api/embeddings/generate",
                json={"imageUrl": image_ref},
                timeout=self.timeout_sec,
            )
        except httpx.TimeoutException as e:
            raise EmbeddingSignalError(
                f"Embedding service timed out after {self.timeout_sec:.0f}s"
            ) from e
        except httpx.HTTPError as e:
            raise EmbeddingSignalError(f"Embedding service request failed: {e}") from e

        if not response.is_success:
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                detail = body.get("error", "Unknown error")
            else:
                detail = response.text[:200] or "Unknown error"
            raise EmbeddingSignalError(
                f"Embedding service error ({response.status_code}): {detail}"
            )

        try:
            payload = parse_signal_payload("embedding", response.json())
        except (ValueError, TypeError, ValidationError) as e:
            raise EmbeddingSignalError(f"Invalid embedding format received from service: {e}") from e

        if payload.dimension != self.dimensions or len(payload.embedding) != self.dimensions:
            raise EmbeddingSignalError(
                f"Unexpected embedding dimensions: {payload.dimension} "
                f"(expected {self.dimensions})"
            )

        score = payload.metadata.get("detection_score")
        logger.info(
            f"Generated {self.dimensions}D embedding "
            f"(detection score: {score if score is not None else 'n/a'})"
        )
        return np.asarray(payload.embedding, dtype=np.float32)
