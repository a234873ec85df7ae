"""
Standards router for lookup operations.

Endpoints:
- POST /search - Search analytical standards (with citation sources)
- POST /details - Bilingual technical breakdown of one standard
- POST /compare - Comparison table for two or more standards
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from methodlab.dependencies import get_lookup_service
from methodlab.errors import GenerationError, InputValidationError
from methodlab.services.lookup_service import LookupService

logger = logging.getLogger(__name__)

router = APIRouter()


class SearchRequest(BaseModel):
    query: str


class DetailRequest(BaseModel):
    code: str
    title: str = ""


class CompareRequest(BaseModel):
    codes: List[str]


def _to_http_error(error: Exception) -> HTTPException:
    if isinstance(error, InputValidationError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"field": error.field, "message": str(error)},
        )
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(error))


@router.post("/search")
async def search_standards(
    request: SearchRequest,
    lookup: LookupService = Depends(get_lookup_service),
):
    """Search standards for a free-text query."""
    try:
        result = await lookup.search(request.query)
    except (InputValidationError, GenerationError) as e:
        logger.error(f"Search failed: {e}")
        raise _to_http_error(e)
    return result.to_dict()


@router.post("/details")
async def fetch_method_details(
    request: DetailRequest,
    lookup: LookupService = Depends(get_lookup_service),
):
    """Technical breakdown with en/vi text per section."""
    try:
        details = await lookup.fetch_details(request.code, request.title)
    except (InputValidationError, GenerationError) as e:
        logger.error(f"Failed to fetch method details for {request.code}: {e}")
        raise _to_http_error(e)
    return details.to_dict()


@router.post("/compare")
async def compare_standards(
    request: CompareRequest,
    lookup: LookupService = Depends(get_lookup_service),
):
    """Compare standards attribute by attribute."""
    try:
        comparison = await lookup.compare(request.codes)
    except (InputValidationError, GenerationError) as e:
        logger.error(f"Comparison failed for {request.codes}: {e}")
        raise _to_http_error(e)
    return comparison.to_dict()
