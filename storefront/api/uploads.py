"""
Media upload endpoints.

Every upload runs the same pipeline: resolve the caller (admin-only for
product media), admit it through the rate limiter, parse and validate the
multipart payload, derive the storage key and hand the bytes to object
storage. A request rejected at any step never reaches storage.
"""

import logging

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile
from starlette.types import Message

from storefront.api.deps import get_client_ip, get_gate, get_rate_limiter, get_storage
from storefront.auth.gate import AuthorizationGate
from storefront.auth.users import AuthenticatedUser
from storefront.core.errors import (
    AuthorizationError,
    MalformedPayloadError,
    SizeExceededError,
    StorageError,
)
from storefront.core.limiter import RateLimiter
from storefront.core.logging_config import log_security_event
from storefront.uploads.categories import UploadCategory
from storefront.uploads.storage import ObjectStorageClient, build_object_key
from storefront.uploads.validator import UploadRequest, ensure_valid, require_resource_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/upload", tags=["uploads"])

# Allowance for multipart boundaries and the text fields around the file
FORM_OVERHEAD_BYTES = 64 * 1024


class UploadResponse(BaseModel):
    url: str


def _body_limit(category: UploadCategory) -> int:
    return category.max_bytes + FORM_OVERHEAD_BYTES


def _check_declared_length(request: Request, category: UploadCategory) -> None:
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > _body_limit(category):
        raise SizeExceededError()


def bounded_request(request: Request, limit: int) -> Request:
    """
    View of ``request`` whose body stream raises once ``limit`` bytes have arrived.

    Chunked bodies carry no Content-Length, so the cap is enforced on the ASGI
    messages themselves before the form parser spools them.
    """
    received = 0

    async def receive() -> Message:
        nonlocal received
        message = await request.receive()
        if message["type"] == "http.request":
            received += len(message.get("body", b""))
            if received > limit:
                raise SizeExceededError()
        return message

    return Request(request.scope, receive)


async def _read_upload(
    request: Request, category: UploadCategory, user: AuthenticatedUser
) -> UploadRequest:
    try:
        form = await bounded_request(request, _body_limit(category)).form()
    except SizeExceededError:
        logger.info("Upload body over the size cap", extra={"category": category.name})
        raise
    except Exception as e:
        logger.info(f"Unparseable upload form: {e}", extra={"category": category.name})
        raise MalformedPayloadError() from e

    try:
        file = form.get("file")
        if not isinstance(file, UploadFile):
            raise MalformedPayloadError("Missing file")

        if not category.admin_only:
            claimed_owner = form.get("userId")
            if not isinstance(claimed_owner, str) or not claimed_owner.strip():
                raise MalformedPayloadError("Missing 'userId'")
            if claimed_owner != user.id:
                log_security_event(
                    "upload_identity_mismatch",
                    "Upload submitted on behalf of another user",
                    user_id=user.id,
                    ip_address=get_client_ip(request),
                    level=logging.WARNING,
                    extra_data={"category": category.name},
                )
                raise AuthorizationError("Cannot upload on behalf of another user")

        raw_resource_id = form.get(category.resource_field)
        resource_id = require_resource_id(
            raw_resource_id if isinstance(raw_resource_id, str) else None,
            category.resource_field,
        )

        if file.size is not None and file.size > category.max_bytes:
            raise SizeExceededError()

        data = await file.read()
        return UploadRequest(
            data=data,
            content_type=file.content_type or "",
            filename=file.filename or "",
            owner_id=category.owner_for(user.id),
            resource_id=resource_id,
            declared_size=file.size,
        )
    finally:
        await form.close()


async def handle_upload(
    request: Request,
    category: UploadCategory,
    gate: AuthorizationGate,
    limiter: RateLimiter,
    storage: ObjectStorageClient,
) -> UploadResponse:
    """
    Run one upload through the full pipeline.

    Raises:
        AuthenticationError: No live session (401)
        AuthorizationError: Not admin, or uploading for someone else (403)
        RateLimitError: Category limit exhausted (429)
        MalformedPayloadError: Missing or invalid form fields (400)
        SizeExceededError: Payload over the category cap (413)
        UnsupportedMediaTypeError: Content type not allowed (415)
        StorageError: Provider failure (500)
    """
    if category.admin_only:
        user = await run_in_threadpool(gate.require_admin)
    else:
        user = await run_in_threadpool(gate.require_user)

    client_ip = get_client_ip(request)
    # Product media is keyed by address only
    limiter_user = None if category.admin_only else user.id
    await run_in_threadpool(limiter.check, category.name, client_ip, limiter_user)

    _check_declared_length(request, category)
    upload = await _read_upload(request, category, user)
    ensure_valid(upload, category.allowed_types, category.max_bytes)

    key = build_object_key(upload.owner_id, upload.resource_id, upload.filename)
    try:
        url = await storage.upload_file(category.bucket, key, upload.data, upload.content_type)
    except StorageError:
        logger.error("Upload failed", extra={
            "category": category.name,
            "user_id": user.id,
            "resource_id": upload.resource_id,
        })
        raise

    return UploadResponse(url=url)


def _category(request: Request, name: str) -> UploadCategory:
    return request.app.state.upload_categories[name]


@router.post("/gallery", response_model=UploadResponse)
async def upload_gallery_media(
    request: Request,
    gate: AuthorizationGate = Depends(get_gate),
    limiter: RateLimiter = Depends(get_rate_limiter),
    storage: ObjectStorageClient = Depends(get_storage),
):
    """Gallery media for one of the caller's setups (form: file, userId, setupId)."""
    return await handle_upload(request, _category(request, "gallery"), gate, limiter, storage)


@router.post("/review", response_model=UploadResponse)
async def upload_review_image(
    request: Request,
    gate: AuthorizationGate = Depends(get_gate),
    limiter: RateLimiter = Depends(get_rate_limiter),
    storage: ObjectStorageClient = Depends(get_storage),
):
    """Image attached to one of the caller's reviews (form: file, userId, reviewId)."""
    return await handle_upload(request, _category(request, "review"), gate, limiter, storage)


@router.post("/product", response_model=UploadResponse)
async def upload_product_image(
    request: Request,
    gate: AuthorizationGate = Depends(get_gate),
    limiter: RateLimiter = Depends(get_rate_limiter),
    storage: ObjectStorageClient = Depends(get_storage),
):
    """Catalog image; admins only (form: file, slug)."""
    return await handle_upload(request, _category(request, "product"), gate, limiter, storage)
