# ABOUTME: FastAPI route serving archived image files by local identifier.
# ABOUTME: Unknown or path-escaping identifiers get a 404.

import structlog
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import FileResponse

log = structlog.get_logger()


def build_router(image_url_prefix: str) -> APIRouter:
    router = APIRouter(prefix=image_url_prefix.rstrip("/"))

    @router.get("/{identifier}")
    async def archived_image(request: Request, identifier: str):
        """Stream an archived image file."""
        path = request.app.state.storage.resolve(identifier)
        if path is None:
            log.debug("image_not_found", identifier=identifier)
            raise HTTPException(status_code=404, detail="Image not found")
        return FileResponse(path, headers={"Cache-Control": "public, max-age=604800"})

    return router
