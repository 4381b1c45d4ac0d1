from fastapi import HTTPException, Request

from mirrorsync.errors import (
    AccountStateError,
    AuthorizationError,
    ExternalServiceError,
    ValidationError,
)


def get_services(request: Request):
    return request.app.state.services


def require_account(services, account_id):
    account = services.state_store.get_account(account_id)
    if account is None:
        raise HTTPException(status_code=404, detail=f"Unknown account: {account_id}")
    return account


def http_error(exc):
    """Translate a project error into the HTTP error callers see."""
    if isinstance(exc, AuthorizationError):
        return HTTPException(status_code=401, detail=f"Reauthorization required: {exc}")
    if isinstance(exc, AccountStateError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, ExternalServiceError):
        return HTTPException(status_code=502, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))
