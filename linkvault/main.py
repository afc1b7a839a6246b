from __future__ import annotations

import logging

from fastapi import Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from linkvault.core.errors import LinkvaultError, Unauthorized, ValidationError
from linkvault.core.services import Services, get_services, init_services
from linkvault.core.settings import Settings

logger = logging.getLogger(__name__)

app = FastAPI(title="linkvault")


@app.on_event("startup")
def _startup() -> None:
    s = Settings.from_env()
    logging.basicConfig(
        level=s.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    init_services(s)


@app.on_event("shutdown")
async def _shutdown() -> None:
    await get_services().close()


@app.exception_handler(LinkvaultError)
async def _linkvault_error(request: Request, exc: LinkvaultError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


def current_user(x_user_id: str | None = Header(default=None)) -> str:
    """Caller identity; sessions are handled in front of this service."""
    if not x_user_id or not x_user_id.strip():
        raise Unauthorized("Unauthorized")
    return x_user_id.strip()


class CreateBookmark(BaseModel):
    url: str | None = None
    text: str | None = None
    notes: str | None = None


class UpdateBookmark(BaseModel):
    title: str | None = None
    notes: str | None = None
    tags: list[str] | None = None
    archived: bool | None = None


def _parse_limit(limit: str | None) -> int | None:
    if limit is None or limit == "":
        return None
    try:
        return int(limit)
    except ValueError:
        raise ValidationError("Invalid query") from None


@app.get("/api/search")
async def api_search(
    q: str = "",
    limit: str | None = None,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
):
    """Hybrid search; `fallback` is true when keyword search answered."""
    response = await services.search.search(user_id, q, _parse_limit(limit))
    return response.to_dict()


@app.post("/api/bookmarks", status_code=201)
async def api_create_bookmark(
    body: CreateBookmark,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
):
    if body.url:
        bookmark = await services.bookmarks.save_url(user_id, body.url, notes=body.notes)
    elif body.text:
        bookmark = await services.bookmarks.save_note(user_id, body.text)
    else:
        raise ValidationError("Either url or text is required")
    return {"bookmark": bookmark}


@app.patch("/api/bookmarks/{bookmark_id}")
async def api_update_bookmark(
    bookmark_id: int,
    body: UpdateBookmark,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
):
    bookmark = await services.bookmarks.update(
        user_id,
        bookmark_id,
        title=body.title,
        notes=body.notes,
        tags=body.tags,
        archived=body.archived,
    )
    return {"bookmark": bookmark}


@app.delete("/api/bookmarks/{bookmark_id}")
def api_delete_bookmark(
    bookmark_id: int,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
):
    services.bookmarks.delete(user_id, bookmark_id)
    return {"success": True}


@app.post("/api/bookmarks/{bookmark_id}/refresh")
async def api_refresh_bookmark(
    bookmark_id: int,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
):
    bookmark = await services.bookmarks.refresh_metadata(user_id, bookmark_id)
    return {"bookmark": bookmark}


@app.post("/api/bookmarks/{bookmark_id}/reindex")
async def api_reindex_bookmark(
    bookmark_id: int,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
):
    """Embed the bookmark now; `skipped` means its content was unchanged."""
    result = await services.indexer.reindex(bookmark_id, user_id)
    return result.to_dict()


@app.post("/api/embeddings/backfill")
async def api_embeddings_backfill(
    limit: int = 100,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
):
    """Embed the caller's bookmarks that have no embedding yet.

    Returns: {"processed": int, "skipped": int, "failed": int, "remaining": int}
    """
    return await services.indexer.reindex_pending(limit=limit, owner_id=user_id)


@app.get("/api/embeddings/stats")
def api_embedding_stats(
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
):
    return services.db.get_embedding_stats(user_id=user_id)


@app.get("/api/providers/health")
async def api_provider_health(services: Services = Depends(get_services)):
    result = await services.provider.health_check()
    return {
        "healthy": result.healthy,
        "provider": result.provider,
        "model": result.model,
        "message": result.message,
        "latency_ms": result.latency_ms,
        "details": result.details,
    }
