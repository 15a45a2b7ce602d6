"""Onboarding email-verification API.

Endpoints
---------
POST /api/onboarding/send-verification    → issue and email a code
POST /api/onboarding/verify-code          → validate a submitted code
GET  /api/onboarding/verification-status  → has this email been verified?
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from email_verification.database.engine import get_session
from email_verification.exceptions import EmailDeliveryError, VerificationError
from email_verification.services.verification_service import (
    VerificationService,
    normalize_email,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/onboarding", tags=["email-verification"])


def get_verification_service(request: Request) -> VerificationService:
    """Return the service created in the app lifespan."""
    return request.app.state.verification_service


# ── Response / request models ────────────────────────────

class SendVerificationRequest(BaseModel):
    email: str | None = None
    organization_name: str | None = None


class SendVerificationResponse(BaseModel):
    success: bool
    message: str


class VerifyCodeRequest(BaseModel):
    email: str | None = None
    code: str | None = None


class VerifyCodeResponse(BaseModel):
    success: bool
    message: str
    token: str
    email: str


class VerificationStatusResponse(BaseModel):
    email: str
    verified: bool
    pending: bool


# ── Endpoints ────────────────────────────────────────────

@router.post("/send-verification", response_model=SendVerificationResponse)
async def send_verification(
    body: SendVerificationRequest,
    request: Request,
    service: VerificationService = Depends(get_verification_service),
):
    """Issue a verification code for the given email and send it."""
    try:
        await service.request_code(
            body.email,
            organization_name=body.organization_name,
            host=request.url.hostname,
        )
    except EmailDeliveryError as exc:
        logger.error("Send verification to %s failed: %s", body.email, exc.detail)
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc
    except VerificationError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc

    return SendVerificationResponse(success=True, message="Verification code sent successfully")


@router.post("/verify-code", response_model=VerifyCodeResponse)
async def verify_code(
    body: VerifyCodeRequest,
    request: Request,
    service: VerificationService = Depends(get_verification_service),
    db_session: AsyncSession = Depends(get_session),
):
    """Validate a verification code and return a verification token."""
    if not body.email or not body.code:
        raise HTTPException(
            status_code=400, detail="Email and verification code are required"
        )

    try:
        outcome = await service.confirm_code(
            body.email, body.code, host=request.url.hostname, db_session=db_session
        )
    except VerificationError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc
    await db_session.commit()

    return VerifyCodeResponse(
        success=True,
        message="Email verified successfully",
        token=outcome.token,
        email=outcome.email,
    )


@router.get("/verification-status", response_model=VerificationStatusResponse)
async def verification_status(
    email: str = Query(..., description="Email address to check"),
    service: VerificationService = Depends(get_verification_service),
    db_session: AsyncSession = Depends(get_session),
):
    """Report whether *email* is verified and whether a code is pending."""
    try:
        normalized = normalize_email(email)
    except VerificationError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc

    verified = await service.is_verified(normalized, db_session)
    return VerificationStatusResponse(
        email=normalized,
        verified=verified,
        pending=service.store.has_code(normalized),
    )
