"""Administrative maintenance endpoints. Every route requires the admin flag."""

import logging
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from storefront.api.deps import get_credentials, get_gate, get_session_store, get_storage
from storefront.auth.credentials import CredentialService
from storefront.auth.gate import AuthorizationGate
from storefront.auth.sessions import SessionStore
from storefront.uploads.storage import DELETE_BATCH_SIZE, ObjectStorageClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


class SweepResponse(BaseModel):
    deleted: int


class DeleteMediaRequest(BaseModel):
    urls: List[str] = Field(..., min_length=1, max_length=DELETE_BATCH_SIZE)


class DeleteMediaResponse(BaseModel):
    accepted: int


@router.post("/sessions/sweep", response_model=SweepResponse)
def sweep_sessions(
    gate: AuthorizationGate = Depends(get_gate),
    sessions: SessionStore = Depends(get_session_store),
):
    """Delete every session row past its expiry."""
    gate.require_admin()
    return SweepResponse(deleted=sessions.sweep_expired())


@router.post("/password-resets/sweep", response_model=SweepResponse)
def sweep_password_resets(
    gate: AuthorizationGate = Depends(get_gate),
    credentials: CredentialService = Depends(get_credentials),
):
    """Delete used and expired password reset tokens."""
    gate.require_admin()
    return SweepResponse(deleted=credentials.sweep_reset_tokens())


@router.post("/uploads/{category}/delete", response_model=DeleteMediaResponse, status_code=202)
async def delete_media(
    category: str,
    payload: DeleteMediaRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    gate: AuthorizationGate = Depends(get_gate),
    storage: ObjectStorageClient = Depends(get_storage),
):
    """
    Schedule best-effort deletion of stored media by their public URLs.

    Failures are logged by the storage client and never reported back.
    """
    admin = await run_in_threadpool(gate.require_admin)

    upload_category = request.app.state.upload_categories.get(category)
    if upload_category is None:
        raise HTTPException(status_code=404, detail=f"Unknown upload category '{category}'")

    logger.info("Media deletion scheduled", extra={
        "category": category,
        "url_count": len(payload.urls),
        "user_id": admin.id,
    })
    background_tasks.add_task(storage.delete_by_urls, upload_category.bucket, payload.urls)
    return DeleteMediaResponse(accepted=len(payload.urls))
