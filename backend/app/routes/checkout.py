"""API routes driving the checkout workflow."""
from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Cookie, Depends, HTTPException, Query, Request, Response, status

from backend import app_context

from ..checkout import (
    CheckoutError,
    CheckoutMode,
    CheckoutParams,
    CheckoutSession,
    PaymentGateway,
    PaymentMethod,
)
from ..schemas.checkout import CheckoutSessionView, PaymentMethodRequest
from ..services.checkout import CheckoutService, get_checkout_service

SITE_ADMIN_ROLES = {"admin"}


def _get_current_user(
    session_token: Optional[str] = Cookie(None, alias=app_context.SESSION_COOKIE_NAME),
):
    return app_context.get_current_user(session_token=session_token)


def _is_site_admin(user: Any) -> bool:
    return getattr(user, "role", None) in SITE_ADMIN_ROLES


def _ensure_member(user: Any, organization_id: Optional[int]) -> None:
    if organization_id is None or _is_site_admin(user):
        return
    if getattr(user, "organization_id", None) != organization_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Cannot purchase for another organization",
        )


def _owned_session(service: CheckoutService, session_id: str, user: Any) -> CheckoutSession:
    try:
        session = service.get_session(session_id)
    except CheckoutError as exc:
        raise exc.to_http_exception() from exc
    if session.owner_id is not None and session.owner_id != user.id and not _is_site_admin(user):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Checkout session not found")
    return session


router = APIRouter(prefix="/api/checkout", tags=["checkout"])


@router.post("/sessions", response_model=CheckoutSessionView, status_code=status.HTTP_201_CREATED)
async def create_checkout_session(
    item_kind: str = Query("plan", alias="type"),
    item_id: int = Query(0, alias="itemId"),
    organization_id: Optional[int] = Query(None, alias="organizationId"),
    return_url: str = Query("/", alias="returnUrl"),
    mode: CheckoutMode = Query(CheckoutMode.ONETIME),
    gateway: Optional[PaymentGateway] = Query(None),
    *,
    current_user=Depends(_get_current_user),
) -> CheckoutSessionView:
    _ensure_member(current_user, organization_id)
    params = CheckoutParams(
        item_kind=item_kind,
        item_id=item_id,
        organization_id=organization_id,
        return_url=return_url,
        mode=mode,
        gateway=gateway,
    )
    service = get_checkout_service()
    try:
        session = await service.open_session(params, owner_id=current_user.id)
    except CheckoutError as exc:
        raise exc.to_http_exception() from exc
    return CheckoutSessionView.from_session(session)


@router.get("/sessions/{session_id}", response_model=CheckoutSessionView)
async def read_checkout_session(
    session_id: str,
    *,
    current_user=Depends(_get_current_user),
) -> CheckoutSessionView:
    session = _owned_session(get_checkout_service(), session_id, current_user)
    return CheckoutSessionView.from_session(session)


@router.put("/sessions/{session_id}/payment-method", response_model=CheckoutSessionView)
async def update_payment_method(
    session_id: str,
    payload: PaymentMethodRequest,
    *,
    current_user=Depends(_get_current_user),
) -> CheckoutSessionView:
    session = _owned_session(get_checkout_service(), session_id, current_user)
    try:
        session.select_method(payload.method)
        if payload.method == PaymentMethod.CREDIT_CARD:
            session.update_card(**payload.card_fields())
            if payload.installments is not None:
                session.set_installments(payload.installments)
    except CheckoutError as exc:
        raise exc.to_http_exception() from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    return CheckoutSessionView.from_session(session)


@router.post("/sessions/{session_id}/submit", response_model=CheckoutSessionView)
async def submit_payment(
    session_id: str,
    *,
    current_user=Depends(_get_current_user),
) -> CheckoutSessionView:
    session = _owned_session(get_checkout_service(), session_id, current_user)
    try:
        await session.submit()
    except CheckoutError as exc:
        raise exc.to_http_exception() from exc
    return CheckoutSessionView.from_session(session)


@router.post("/sessions/{session_id}/confirm", response_model=CheckoutSessionView)
async def confirm_manual_payment(
    session_id: str,
    *,
    current_user=Depends(_get_current_user),
) -> CheckoutSessionView:
    session = _owned_session(get_checkout_service(), session_id, current_user)
    try:
        await session.confirm_manual()
    except CheckoutError as exc:
        raise exc.to_http_exception() from exc
    return CheckoutSessionView.from_session(session)


@router.delete("/sessions/{session_id}/notifications", response_model=CheckoutSessionView)
async def dismiss_notifications(
    session_id: str,
    *,
    current_user=Depends(_get_current_user),
) -> CheckoutSessionView:
    session = _owned_session(get_checkout_service(), session_id, current_user)
    session.notifications.dismiss()
    return CheckoutSessionView.from_session(session)


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def abandon_checkout_session(
    session_id: str,
    *,
    current_user=Depends(_get_current_user),
) -> Response:
    service = get_checkout_service()
    session = _owned_session(service, session_id, current_user)
    service.abandon_session(session.session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/webhook", status_code=status.HTTP_204_NO_CONTENT)
async def receive_webhook(request: Request) -> Response:
    service = get_checkout_service()
    body = await request.body()
    try:
        await service.handle_webhook(body, request.headers.get("stripe-signature"))
    except CheckoutError as exc:
        raise exc.to_http_exception() from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
