"""
Image Resizer API Routes

URL forms (first match wins):
- GET /{path}/{width}     e.g. /photos/a.jpg/300
- GET /{width}/{path}     e.g. /300/photos/a.jpg
- GET /{path}?w={width}   e.g. /photos/a.jpg?w=300, or no width at all

The Host header selects the tenant. Lifecycle bookkeeping for the served
files is attached as background tasks and runs after the response.
"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from fastapi.responses import FileResponse, Response, StreamingResponse

from .errors import ImageCacheError
from .orchestrator import RequestOrchestrator, ServeResult

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Image Resizer"])


def get_orchestrator(request: Request) -> RequestOrchestrator:
    return request.app.state.orchestrator


def parse_width(value: Optional[str]) -> int:
    """Lenient width parsing for the query fallback: anything invalid is 0."""
    if not value:
        return 0
    try:
        width = int(value)
    except ValueError:
        return 0
    return max(width, 0)


def _build_response(result: ServeResult) -> Response:
    headers = {
        "X-Forwarded-Host": result.origin_host,
        "X-Cache": "HIT" if result.cache_hit else "MISS",
    }
    if result.stream is not None:
        return StreamingResponse(result.stream, media_type=result.media_type, headers=headers)
    return FileResponse(result.file, media_type=result.media_type, headers=headers)


async def _serve(
    request: Request,
    background_tasks: BackgroundTasks,
    orchestrator: RequestOrchestrator,
    path: str,
    width: int,
) -> Response:
    host = request.headers.get("host", "")
    client_ip = request.client.host if request.client else ""

    try:
        result = await orchestrator.handle(host, path, width, client_ip)
    except ImageCacheError as e:
        logger.error(f"[ImageRoute] [ERROR {e.status_code}] {e}")
        raise HTTPException(status_code=e.status_code, detail=str(e))

    for artifact in result.artifacts:
        background_tasks.add_task(orchestrator.lifecycle.touch, artifact)

    logger.debug(
        f"[ImageRoute] {'HIT' if result.cache_hit else 'MISS'} "
        f"{result.origin_host}/{result.paths.basename} w={width}"
    )
    return _build_response(result)


# ============================================
# Endpoints
# ============================================

@router.get("/{path:path}/{width:int}")
async def serve_path_width(
    path: str,
    width: int,
    request: Request,
    background_tasks: BackgroundTasks,
    orchestrator: RequestOrchestrator = Depends(get_orchestrator),
):
    """Image at a width given as the last path segment."""
    return await _serve(request, background_tasks, orchestrator, path, width)


@router.get("/{width:int}/{path:path}")
async def serve_width_path(
    width: int,
    path: str,
    request: Request,
    background_tasks: BackgroundTasks,
    orchestrator: RequestOrchestrator = Depends(get_orchestrator),
):
    """Image at a width given as the first path segment."""
    return await _serve(request, background_tasks, orchestrator, path, width)


@router.get("/{path:path}")
async def serve_path(
    path: str,
    request: Request,
    background_tasks: BackgroundTasks,
    orchestrator: RequestOrchestrator = Depends(get_orchestrator),
):
    """Image with an optional ?w= width; without one, the original resolution."""
    width = parse_width(request.query_params.get("w"))
    return await _serve(request, background_tasks, orchestrator, path, width)
