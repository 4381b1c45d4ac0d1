"""
Webhook endpoints

Subscription management and the Graph change-notification receiver.
"""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

from mirrorsync.api.deps import get_services, http_error, require_account
from mirrorsync.errors import ProjectError, ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


class CreateSubscriptionRequest(BaseModel):
    account_id: str = Field(..., alias="accountId", min_length=1)
    resource_type: str = Field(..., alias="resourceType", min_length=1)


class RenewSubscriptionRequest(BaseModel):
    subscription_id: str = Field(..., alias="subscriptionId", min_length=1)


@router.post("/manage", status_code=201)
def create_subscription(body: CreateSubscriptionRequest, services=Depends(get_services)):
    require_account(services, body.account_id)
    try:
        subscription = services.subscriptions.create_subscription(body.account_id, body.resource_type)
    except ProjectError as exc:
        raise http_error(exc) from exc
    return subscription.to_dict()


@router.patch("/manage")
def renew_subscription(body: RenewSubscriptionRequest, services=Depends(get_services)):
    try:
        subscription = services.subscriptions.renew_subscription(body.subscription_id)
    except ProjectError as exc:
        raise http_error(exc) from exc
    return subscription.to_dict()


@router.delete("/manage")
def delete_subscription(subscription_id: str = Query(..., alias="subscriptionId"), services=Depends(get_services)):
    try:
        subscription = services.subscriptions.delete_subscription(subscription_id)
    except ProjectError as exc:
        raise http_error(exc) from exc
    return subscription.to_dict()


@router.get("/manage")
def list_subscriptions(account_id: str = Query(..., alias="accountId"), services=Depends(get_services)):
    require_account(services, account_id)
    return {
        "subscriptions": [subscription.to_dict() for subscription in services.subscriptions.list_active(account_id)]
    }


@router.post("/notify")
async def receive_notifications(request: Request, services=Depends(get_services)):
    """
    Graph change-notification receiver.

    A validationToken query parameter is the subscription handshake and is
    echoed back as plain text. Otherwise the body is a batch of notification
    envelopes; it is acknowledged with 202 and the syncs run in the background.
    """
    validation_token = request.query_params.get("validationToken")
    if validation_token is not None:
        return PlainTextResponse(
            services.notifications.handle_validation_handshake(validation_token),
            status_code=200,
        )

    try:
        payload = json.loads(await request.body() or b"null")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Notification body must be JSON.") from exc

    try:
        received = await run_in_threadpool(services.notifications.handle_notifications, payload)
    except ValidationError as exc:
        logger.warning("Rejected notification batch: %s", exc)
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return JSONResponse(status_code=202, content={"received": received})
