"""Pydantic schemas for authentication and profiles."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from civictrack.models.user import UserRole


class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=3, max_length=30)
    email: EmailStr
    password: str = Field(..., min_length=8)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class WalletTransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    delta: int
    description: str
    issue_id: Optional[UUID]
    created_at: datetime


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    email: str
    role: UserRole
    department_id: Optional[UUID]
    wallet_balance: int
    created_at: datetime


class ProfileResponse(UserResponse):
    transactions: List[WalletTransactionResponse] = Field(default_factory=list)
