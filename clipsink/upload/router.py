"""FastAPI router for the screenshot upload endpoint."""
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import PlainTextResponse

from ..errors import ClipsinkError, MalformedRequest, SizeExceeded
from .formdata import FormFieldReader, form_boundary
from .service import get_ingestion_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["upload"])

UPLOAD_FIELD_NAME = "img"
# Room for boundaries and part headers on top of the image itself
MULTIPART_OVERHEAD = 64 * 1024

# The body is parsed by hand, so describe the form for the OpenAPI schema
UPLOAD_REQUEST_BODY = {
    "requestBody": {
        "required": True,
        "content": {
            "multipart/form-data": {
                "schema": {
                    "type": "object",
                    "properties": {UPLOAD_FIELD_NAME: {"type": "string", "format": "binary"}},
                    "required": [UPLOAD_FIELD_NAME],
                }
            }
        },
    }
}


def reject_oversized_body(content_length: Optional[str], max_image_size: int) -> None:
    """Fail fast when the declared body cannot fit under the size limit."""
    if content_length is None:
        return
    try:
        length = int(content_length)
    except ValueError:
        raise MalformedRequest(f"Invalid Content-Length header: {content_length!r}")
    if length > max_image_size + MULTIPART_OVERHEAD:
        raise SizeExceeded(length, max_image_size)


@router.post("/upload", response_class=PlainTextResponse, openapi_extra=UPLOAD_REQUEST_BODY)
async def upload_image(request: Request) -> PlainTextResponse:
    """Accept a screenshot, store it if configured, and copy it to the clipboard.

    The ``img`` part is streamed straight from the request body into the
    ingestion pipeline.

    Returns:
        The stored path as plain text, or ``clipboard only`` when
        persistence is disabled or was skipped.

    Raises:
        HTTPException 400: Not an image, undecodable image data or a
            malformed multipart body
        HTTPException 413: Upload exceeds ``max_image_size``
        HTTPException 422: No ``img`` field in the form
        HTTPException 500: Write, multipart read or clipboard failure
        HTTPException 503: Service not initialised
    """
    service = get_ingestion_service()
    if service is None:
        logger.warning("[upload] No ingestion service configured")
        raise HTTPException(status_code=503, detail="Upload service not available")

    try:
        reject_oversized_body(request.headers.get("content-length"), service.config.max_image_size)
        reader = FormFieldReader(
            request.stream(),
            form_boundary(request.headers.get("content-type")),
            UPLOAD_FIELD_NAME,
        )
        field = await reader.field()
        location = await service.ingest(field)
    except ClipsinkError as e:
        logger.info("[upload] Rejected with %d: %s", e.status_code, e)
        raise HTTPException(status_code=e.status_code, detail=str(e))

    return PlainTextResponse(location)
