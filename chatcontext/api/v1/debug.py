"""Read-only cache diagnostics."""

from fastapi import APIRouter, HTTPException, Query, Request

from chatcontext.core.inspector import inspect_cache_key
from chatcontext.models.schemas import CacheInspection

router = APIRouter()


@router.get("/cache-inspector", response_model=CacheInspection)
async def cache_inspector(
    request: Request,
    key: str = Query(..., min_length=1, description="Fully qualified key, e.g. global:rag:<hash>"),
) -> CacheInspection:
    inspection = await inspect_cache_key(request.app.state.cache, key)
    if not inspection.found:
        raise HTTPException(status_code=404, detail=f"Cache key not found: {key}")
    return inspection
