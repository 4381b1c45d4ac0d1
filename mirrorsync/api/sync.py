"""
Sync triggers

Manual entry points for account, folder, message, calendar, contact and Teams
syncs, plus sync-state queries.
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from mirrorsync.api.deps import get_services, http_error, require_account
from mirrorsync.domain.models import OverallStatus
from mirrorsync.errors import ProjectError

router = APIRouter(prefix="/sync", tags=["Sync"])


class AccountRequest(BaseModel):
    account_id: str = Field(..., alias="accountId", min_length=1)


class MessagesRequest(AccountRequest):
    folder_id: str | None = Field(None, alias="folderId")
    include_attachments: bool = Field(False, alias="includeAttachments")
    download_content: bool = Field(False, alias="downloadContent")


def _scope_response(result):
    if result.already_in_progress:
        return JSONResponse(status_code=409, content={"error": "Sync already in progress", **result.to_dict()})
    return result.to_dict()


def _batch_response(results):
    return {"results": {scope: result.to_dict() for scope, result in results.items()}}


@router.post("/account")
def sync_account(body: AccountRequest, services=Depends(get_services)):
    """Folder sync followed by message sync of every known folder."""
    require_account(services, body.account_id)
    try:
        result = services.orchestrator.full_account_sync(body.account_id)
    except ProjectError as exc:
        raise http_error(exc) from exc
    if result.status == OverallStatus.IN_PROGRESS:
        return JSONResponse(status_code=409, content={"error": "Sync already in progress", **result.to_dict()})
    if result.status == OverallStatus.FAILED:
        return JSONResponse(status_code=502, content=result.to_dict())
    return result.to_dict()


@router.post("/folders")
def sync_folders(body: AccountRequest, services=Depends(get_services)):
    require_account(services, body.account_id)
    try:
        result = services.orchestrator.sync_folders(body.account_id)
    except ProjectError as exc:
        raise http_error(exc) from exc
    return _scope_response(result)


@router.post("/messages")
def sync_messages(body: MessagesRequest, services=Depends(get_services)):
    """Sync one folder, or every known folder when folderId is omitted."""
    require_account(services, body.account_id)
    params = {"attachments": body.include_attachments, "download_content": body.download_content}
    try:
        results = services.orchestrator.sync_messages(body.account_id, folder_id=body.folder_id, params=params)
    except ProjectError as exc:
        raise http_error(exc) from exc
    if body.folder_id:
        return _scope_response(next(iter(results.values())))
    return _batch_response(results)


@router.post("/calendar")
def sync_calendar(body: AccountRequest, services=Depends(get_services)):
    require_account(services, body.account_id)
    try:
        result = services.orchestrator.sync_calendar(body.account_id)
    except ProjectError as exc:
        raise http_error(exc) from exc
    return _scope_response(result)


@router.post("/contacts")
def sync_contacts(body: AccountRequest, services=Depends(get_services)):
    require_account(services, body.account_id)
    try:
        result = services.orchestrator.sync_contacts(body.account_id)
    except ProjectError as exc:
        raise http_error(exc) from exc
    return _scope_response(result)


@router.post("/teams")
def sync_teams(body: AccountRequest, services=Depends(get_services)):
    require_account(services, body.account_id)
    try:
        results = services.orchestrator.sync_teams(body.account_id)
    except ProjectError as exc:
        raise http_error(exc) from exc
    return _batch_response(results)


@router.get("/status")
def sync_status(
    account_id: str = Query(..., alias="accountId"),
    scope: str | None = None,
    services=Depends(get_services),
):
    account = require_account(services, account_id)
    if scope:
        state = services.state_store.get_sync_state(account_id, scope)
        if state is None:
            raise HTTPException(status_code=404, detail=f"No sync state for scope: {scope}")
        return state.to_dict()
    return {
        "account": account.to_dict(),
        "scopes": [state.to_dict() for state in services.state_store.list_sync_states(account_id)],
    }
