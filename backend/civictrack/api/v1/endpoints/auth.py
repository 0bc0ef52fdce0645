"""
Authentication endpoints: registration, login/logout and the caller's profile.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from civictrack.core.database import get_db
from civictrack.core.exceptions import ValidationError
from civictrack.core.security import (
    clear_auth_cookie,
    create_user_token,
    get_current_user,
    hash_password,
    set_auth_cookie,
    verify_password,
)
from civictrack.models.user import User, UserRole, WalletTransaction
from civictrack.schemas.user import (
    LoginRequest,
    ProfileResponse,
    RegisterRequest,
    TokenResponse,
    UserResponse,
    WalletTransactionResponse,
)

router = APIRouter()


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register(
    payload: RegisterRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    """
    Create a citizen account and sign it in.

    Staff and admin accounts are provisioned by administrators only.
    """
    email = payload.email.lower()
    existing = await db.execute(select(User.id).where(User.email == email))
    if existing.first() is not None:
        raise ValidationError("Email is already registered", field="email")

    user = User(
        name=payload.name,
        email=email,
        hashed_password=hash_password(payload.password),
        role=UserRole.CITIZEN,
        wallet_balance=0,
        is_active=True,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)

    set_auth_cookie(response, create_user_token(user))
    return user


@router.post("/login", response_model=TokenResponse)
async def login(
    credentials: LoginRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    """Authenticate, set the auth cookie and return the token."""
    stmt = select(User).where(User.email == credentials.email.lower())
    result = await db.execute(stmt)
    user = result.scalar_one_or_none()

    if not user or not user.is_active or not verify_password(
        credentials.password, user.hashed_password
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user.last_login_at = datetime.now(timezone.utc)
    await db.commit()

    token = create_user_token(user)
    set_auth_cookie(response, token)
    return TokenResponse(access_token=token)


@router.post("/logout")
async def logout(response: Response):
    clear_auth_cookie(response)
    return {"success": True, "message": "Logged out"}


@router.get("/me", response_model=ProfileResponse)
async def me(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Profile of the caller including the wallet history, newest first."""
    result = await db.execute(
        select(WalletTransaction)
        .where(WalletTransaction.user_id == current_user.id)
        .order_by(WalletTransaction.created_at.desc())
    )
    transactions = [
        WalletTransactionResponse.model_validate(item) for item in result.scalars().all()
    ]
    return ProfileResponse(
        **UserResponse.model_validate(current_user).model_dump(),
        transactions=transactions,
    )
