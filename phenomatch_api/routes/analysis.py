"""
Analysis API Routes

This module provides the hybrid analysis endpoint:
- POST /analyze-hybrid: Run embedding, measurement and vision signals,
  fuse them and store the analysis and report

Fatal pipeline errors are turned into JSON error responses by the
PipelineError handler registered in phenomatch_api.app.
"""

import ipaddress
import logging
from typing import Optional
from urllib.parse import urlparse

from fastapi import APIRouter, HTTPException, Request

from phenomatch.config import get_api_config
from phenomatch.pipeline import HybridAnalysisPipeline
from phenomatch_api.schemas import (
    AnalyzeRequest,
    AnalyzeResponse,
    ErrorResponse,
    MatchSchema,
    SignalsUsed,
)

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(tags=["analysis"])

ALLOWED_SCHEMES = ("http", "https")
BLOCKED_HOSTNAMES = ("localhost", "metadata.google.internal")


def validate_image_url(url: str, allow_private_hosts: bool = False) -> Optional[str]:
    """
    Check an image URL before any service is asked to fetch it.

    Args:
        url: URL submitted by the client.
        allow_private_hosts: Accept localhost and private/link-local addresses.

    Returns:
        Error message, or None if the URL is acceptable.
    """
    parsed = urlparse(url)

    if parsed.scheme not in ALLOWED_SCHEMES:
        return f"Invalid protocol: {parsed.scheme or 'none'}. Use http or https."
    if not parsed.hostname:
        return "Invalid URL format. Please provide a valid image URL."
    if parsed.username or parsed.password:
        return "URLs with authentication are not allowed."

    if allow_private_hosts:
        return None

    hostname = parsed.hostname.lower()
    if hostname in BLOCKED_HOSTNAMES:
        return "Private IP addresses and localhost are not allowed."
    try:
        address = ipaddress.ip_address(hostname)
    except ValueError:
        return None
    if address.is_private or address.is_loopback or address.is_link_local or address.is_unspecified:
        return "Private IP addresses and localhost are not allowed."
    return None


def get_pipeline(request: Request) -> HybridAnalysisPipeline:
    """Pipeline created by the application lifespan."""
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Analysis pipeline not initialized")
    return pipeline


@router.post(
    "/analyze-hybrid",
    response_model=AnalyzeResponse,
    responses={
        422: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def analyze_hybrid(body: AnalyzeRequest, request: Request):
    """
    Analyse one uploaded image with the hybrid matcher.

    The embedding signal is mandatory; measurement and vision are optional
    and their absence is reported through `signals_used` and `degraded`.

    Raises:
        400: If the image URL is rejected.
        422/502/503: On fatal pipeline errors (see ErrorResponse.code).
    """
    api_config = get_api_config()
    error = validate_image_url(
        body.image_url,
        allow_private_hosts=bool(api_config.get("allow_private_image_hosts", False)),
    )
    if error is not None:
        raise HTTPException(status_code=400, detail=error)

    pipeline = get_pipeline(request)

    logger.info(f"Hybrid analysis request: {body.image_url}")
    outcome = await pipeline.analyze(body.image_url)
    result = outcome.result

    return AnalyzeResponse(
        analysis_id=outcome.analysis_id,
        report_id=outcome.report.report_id if outcome.report else None,
        matches=[MatchSchema(**m.to_dict()) for m in result.matches],
        narrative=outcome.narrative,
        narrative_source=outcome.narrative_source,
        mode=result.mode,
        signals_used=SignalsUsed(**result.signals_used),
        degraded=result.degraded,
        facial_features=result.facial_features,
        measurements=result.measurements.to_dict() if result.measurements else None,
        vision_summary=result.vision_summary,
        traits=result.traits,
        image_url=body.image_url,
    )
