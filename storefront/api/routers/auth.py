"""
Authentication endpoints: register, login, email verification and passwords.

Tokens are HS256 JWTs sent back as `Authorization: Bearer <token>`.
"""

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.orm import Session

from storefront.api.deps import client_ip, get_config, get_current_user, get_mailer
from storefront.api.schemas import (
    ChangePasswordRequest, EmailRequest, LoginRequest, RegisterRequest, ResetPasswordRequest, TokenRequest, ok,
)
from storefront.db.database import get_db
from storefront.db.models import User
from storefront.services.accounts import serialize_user
from storefront.services.auth import AuthService
from storefront.services.email import Mailer

router = APIRouter(prefix="/api/auth", tags=["auth"])

RESET_REQUESTED_MESSAGE = "If an account exists for that email, a reset link has been sent."


def get_auth_service(request: Request, db: Session = Depends(get_db), config=Depends(get_config)) -> AuthService:
    return AuthService(db, config, request.app.state.hasher, request.app.state.tokens)


@router.post("/register", status_code=201)
def register(
    request: RegisterRequest,
    background: BackgroundTasks,
    auth: AuthService = Depends(get_auth_service),
    mailer: Mailer = Depends(get_mailer),
):
    user, verification_token = auth.register(
        request.email, request.password,
        first_name=request.first_name, last_name=request.last_name, phone=request.phone,
    )
    background.add_task(mailer.send_email_verification, user.email, user.first_name or "", verification_token)
    return ok(user=serialize_user(user), token=auth.tokens.issue(user))


@router.post("/login")
def login(
    request: LoginRequest,
    auth: AuthService = Depends(get_auth_service),
    ip_address=Depends(client_ip),
):
    user, token = auth.authenticate(request.email, request.password, ip_address)
    return ok(user=serialize_user(user), token=token)


@router.get("/me")
def me(user: User = Depends(get_current_user)):
    return ok(user=serialize_user(user))


@router.post("/verify-email")
def verify_email(request: TokenRequest, auth: AuthService = Depends(get_auth_service)):
    user = auth.verify_email(request.token)
    return ok(message="Email verified", user=serialize_user(user))


@router.post("/resend-verification")
def resend_verification(
    request: EmailRequest,
    background: BackgroundTasks,
    auth: AuthService = Depends(get_auth_service),
    mailer: Mailer = Depends(get_mailer),
):
    issued = auth.new_verification_token(request.email)
    if issued is not None:
        user, token = issued
        background.add_task(mailer.send_email_verification, user.email, user.first_name or "", token)
    return ok(message="If the account needs verification, a new link has been sent.")


@router.post("/forgot-password")
def forgot_password(
    request: EmailRequest,
    background: BackgroundTasks,
    auth: AuthService = Depends(get_auth_service),
    mailer: Mailer = Depends(get_mailer),
    ip_address=Depends(client_ip),
):
    """Always succeeds so the response does not reveal which emails have accounts."""
    issued = auth.request_password_reset(request.email, ip_address)
    if issued is not None:
        user, token = issued
        background.add_task(mailer.send_password_reset, user.email, user.first_name or "", token)
    return ok(message=RESET_REQUESTED_MESSAGE)


@router.post("/reset-password")
def reset_password(
    request: ResetPasswordRequest,
    auth: AuthService = Depends(get_auth_service),
    ip_address=Depends(client_ip),
):
    auth.reset_password(request.token, request.password, ip_address)
    return ok(message="Password has been reset")


@router.post("/change-password")
def change_password(
    request: ChangePasswordRequest,
    auth: AuthService = Depends(get_auth_service),
    user: User = Depends(get_current_user),
):
    auth.change_password(user, request.current_password, request.new_password)
    return ok(message="Password changed")
