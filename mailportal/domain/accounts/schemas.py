"""SMTP account schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class AccountCreate(BaseModel):
    """Schema for registering a new SMTP account"""

    name: Optional[str] = None
    host: Optional[str] = None  # e.g., smtp.gmail.com
    port: Optional[int] = None  # 587 for STARTTLS, 465 for SSL
    secure: bool = False
    username: Optional[str] = None
    password: Optional[str] = None
    fromName: Optional[str] = None
    signature: Optional[str] = None
    isDefault: bool = False


class AccountUpdate(BaseModel):
    """Schema for a partial account update; absent fields stay unchanged"""

    name: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = None
    secure: Optional[bool] = None
    username: Optional[str] = None
    password: Optional[str] = None
    fromName: Optional[str] = None
    signature: Optional[str] = None
    isDefault: Optional[bool] = None


class AccountResponse(BaseModel):
    """Schema for account responses. The password never leaves the vault boundary."""

    id: int
    name: str
    host: str
    port: int
    secure: bool
    username: str
    fromName: Optional[str] = None
    signature: str = ""
    isDefault: bool
    isActive: bool
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None

    @classmethod
    def from_account(cls, account) -> "AccountResponse":
        return cls(
            id=account.id,
            name=account.name,
            host=account.host,
            port=account.port,
            secure=account.secure,
            username=account.username,
            fromName=account.from_name,
            signature=account.signature or "",
            isDefault=account.is_default,
            isActive=account.is_active,
            createdAt=account.created_at,
            updatedAt=account.updated_at,
        )


class InlineTestRequest(BaseModel):
    """Connection test for settings that have not been saved yet"""

    host: str
    port: int = 587
    secure: bool = False
    username: str
    password: str


class ConnectionTestResponse(BaseModel):
    success: bool
    message: str
    errorKind: Optional[str] = None


class SmtpProvider(BaseModel):
    name: str
    host: str
    port: int
    secure: bool
    description: str
