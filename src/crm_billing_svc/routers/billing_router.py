import logging
from typing import Optional

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from sqlalchemy.orm import Session

from crm_billing_svc.auth import AuthenticatedUser, get_current_user
from crm_billing_svc.config import Settings, get_settings
from crm_billing_svc.exceptions import InvalidEvent, SignatureInvalid
from crm_billing_svc.models.base import get_db
from crm_billing_svc.stripe_event_processor import process_event
from crm_billing_svc.stripe_integration import StripeIntegration
from crm_billing_svc.subscription_reconciler import SubscriptionReconciler
from crm_billing_svc.subscription_store import SubscriptionStore

router = APIRouter()


def get_stripe_integration(settings: Settings = Depends(get_settings)) -> StripeIntegration:
    return StripeIntegration(settings)


def get_subscription_store(db: Session = Depends(get_db)) -> SubscriptionStore:
    return SubscriptionStore(db)


def get_reconciler(
    store: SubscriptionStore = Depends(get_subscription_store),
    stripe_integration: StripeIntegration = Depends(get_stripe_integration),
) -> SubscriptionReconciler:
    return SubscriptionReconciler(store, stripe_integration)


class CheckoutSessionRequest(BaseModel):
    # The frontend posts camelCase field names
    model_config = ConfigDict(populate_by_name=True)

    price_id: str = Field(min_length=1, alias="priceId")
    success_url: Optional[str] = Field(default=None, alias="successUrl")
    cancel_url: Optional[str] = Field(default=None, alias="cancelUrl")
    customer_email: Optional[EmailStr] = Field(default=None, alias="customerEmail")


class PortalSessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    customer_id: str = Field(min_length=1, alias="customerId")
    return_url: Optional[str] = Field(default=None, alias="returnUrl")


class SessionResponse(BaseModel):
    url: str


@router.post("/webhook", status_code=200)
async def process_webhook(
    request: Request,
    settings: Settings = Depends(get_settings),
    reconciler: SubscriptionReconciler = Depends(get_reconciler),
):
    payload = await request.body()
    if not payload:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing raw body")
    sig_header = request.headers.get("Stripe-Signature")
    if not sig_header:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing Stripe-Signature header")
    if not settings.stripe_webhook_secret:
        logging.error("Stripe webhook secret (STRIPE_WEBHOOK_SECRET) not configured")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Stripe webhook secret not configured")

    try:
        event = reconciler.stripe_integration.verify_webhook_event(payload, sig_header, settings.stripe_webhook_secret)
    except (SignatureInvalid, InvalidEvent) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    try:
        process_event(event, reconciler)
    except Exception as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Error processing webhook event")

    return {"received": True}


@router.post("/checkout-session", status_code=201, response_model=SessionResponse)
async def create_checkout_session(
    checkout_request: CheckoutSessionRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    store: SubscriptionStore = Depends(get_subscription_store),
    stripe_integration: StripeIntegration = Depends(get_stripe_integration),
):
    org_id = store.org_id_for_user(user.id)
    if not org_id:
        # The resulting subscription cannot be attributed until the user joins an organization
        logging.warning(f"User {user.id} started checkout without an organization")
    try:
        url = stripe_integration.create_checkout_session(
            checkout_request.price_id,
            success_url=checkout_request.success_url,
            cancel_url=checkout_request.cancel_url,
            customer_email=checkout_request.customer_email,
            org_id=org_id,
            user_id=user.id,
        )
    except (stripe.StripeError, ValueError) as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Failed to create checkout session")
    return {"url": url}


@router.post("/portal-session", status_code=201, response_model=SessionResponse)
async def create_portal_session(
    portal_request: PortalSessionRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    stripe_integration: StripeIntegration = Depends(get_stripe_integration),
):
    try:
        url = stripe_integration.create_portal_session(portal_request.customer_id, portal_request.return_url)
    except stripe.StripeError as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Failed to create portal session")
    return {"url": url}


@router.get("/subscriptions", status_code=200)
async def list_subscriptions(
    user: AuthenticatedUser = Depends(get_current_user),
    store: SubscriptionStore = Depends(get_subscription_store),
):
    org_id = store.org_id_for_user(user.id)
    if not org_id:
        return []
    return [subscription.to_dict() for subscription in store.list_for_org(org_id)]


@router.get("/plans", status_code=200)
async def list_plans(
    user: AuthenticatedUser = Depends(get_current_user),
    stripe_integration: StripeIntegration = Depends(get_stripe_integration),
):
    try:
        return stripe_integration.list_plans()
    except stripe.StripeError as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Failed to get subscription plans")
