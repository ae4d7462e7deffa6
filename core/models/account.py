# =============================================================================
# core/models/account.py - Account & Auth Schemas
# =============================================================================
# Sign-up/sign-in forms, password policy, 2FA, sessions and profile updates.
# =============================================================================

import re
from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

_NAME_PATTERN = re.compile(r"^[A-Z][a-zA-Z'-]*(?:\s[A-Z][a-zA-Z'-]*)*$")


def validate_new_password(password: str) -> str:
    """
    Password policy for new passwords (NIST-style).

    12-128 characters with upper, lower, digit and symbol; no whitespace and
    no character repeated four or more times in a row.
    """
    if len(password) < 12:
        raise ValueError("New password must be at least 12 characters long.")
    if len(password) > 128:
        raise ValueError("New password cannot exceed 128 characters.")
    if not re.search(r"[A-Z]", password):
        raise ValueError("New password must contain at least one uppercase letter.")
    if not re.search(r"[a-z]", password):
        raise ValueError("New password must contain at least one lowercase letter.")
    if not re.search(r"[0-9]", password):
        raise ValueError("New password must contain at least one number.")
    if not re.search(r"[^A-Za-z0-9]", password):
        raise ValueError("New password must contain at least one symbol.")
    if re.search(r"(.)\1\1\1", password):
        raise ValueError("New password cannot have more than 3 identical consecutive characters.")
    if re.search(r"\s", password):
        raise ValueError("New password cannot contain spaces.")
    return password


def validate_person_name(name: str) -> str:
    name = name.strip()
    if len(name) < 2:
        raise ValueError("Must be at least 2 characters long.")
    if len(name) > 50:
        raise ValueError("Cannot exceed 50 characters.")
    if not _NAME_PATTERN.match(name):
        raise ValueError("Start with a capital letter. Use only letters, hyphens, or apostrophes.")
    if re.search(r"['-]{2,}", name):
        raise ValueError("Cannot contain consecutive hyphens or apostrophes.")
    return name


# =============================================================================
# Auth forms
# =============================================================================

class SignUpRequest(BaseModel):
    first_name: str
    last_name: str
    email: EmailStr
    password: str
    confirm_password: str

    @field_validator("first_name", "last_name")
    @classmethod
    def check_names(cls, value: str) -> str:
        return validate_person_name(value)

    @field_validator("password")
    @classmethod
    def check_password(cls, value: str) -> str:
        return validate_new_password(value)

    @model_validator(mode="after")
    def check_cross_fields(self) -> "SignUpRequest":
        email = str(self.email)
        if self.password == email.split("@")[0]:
            raise ValueError("Password cannot be the same as your email username.")
        if self.password == email:
            raise ValueError("Password cannot be the same as your full email address.")
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match.")
        return self

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class SignInRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class TwoFactorSignInRequest(BaseModel):
    """Second step of sign-in when 2FA is enabled."""

    challenge_token: str = Field(..., min_length=1)
    code: str = Field(..., min_length=6, max_length=32)


class RecoverySignInRequest(BaseModel):
    challenge_token: str = Field(..., min_length=1)
    recovery_code: str = Field(..., min_length=1)


class TokenRequest(BaseModel):
    token: str = Field(..., min_length=1)


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1)
    new_password: str
    confirm_new_password: str

    @field_validator("new_password")
    @classmethod
    def check_password(cls, value: str) -> str:
        return validate_new_password(value)

    @model_validator(mode="after")
    def check_match(self) -> "ResetPasswordRequest":
        if self.new_password != self.confirm_new_password:
            raise ValueError("New passwords do not match.")
        return self


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str
    confirm_new_password: str

    @field_validator("new_password")
    @classmethod
    def check_password(cls, value: str) -> str:
        return validate_new_password(value)

    @model_validator(mode="after")
    def check_match(self) -> "ChangePasswordRequest":
        if self.new_password != self.confirm_new_password:
            raise ValueError("New passwords do not match.")
        if self.current_password == self.new_password:
            raise ValueError("New password must be different from the current password.")
        return self


class EmailChangeRequest(BaseModel):
    new_email: EmailStr
    current_password: str = Field(..., min_length=1)


class PasswordConfirmation(BaseModel):
    """Re-authentication for sensitive actions (password optional for passwordless accounts)."""

    password: str | None = None


class TwoFactorCodeRequest(BaseModel):
    code: str = Field(..., min_length=6, max_length=6, pattern=r"^\d{6}$")


class ProfileUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=2, max_length=120)
    professional_title: str | None = Field(default=None, max_length=100)
    institution: str | None = Field(default=None, max_length=150)


# =============================================================================
# Responses
# =============================================================================

class AuthTokenResponse(BaseModel):
    """Either a full session or a pending 2FA challenge."""

    access_token: str | None = None
    token_type: str = "bearer"
    expires_at: datetime | None = None
    two_factor_required: bool = False
    challenge_token: str | None = None


class TwoFactorSetupResponse(BaseModel):
    secret: str
    otpauth_url: str


class RecoveryCodesResponse(BaseModel):
    codes: list[str]


class RecoveryCodeStatus(BaseModel):
    total: int
    remaining: int


class SessionResponse(BaseModel):
    id: str
    browser: str | None = None
    browser_version: str | None = None
    os: str | None = None
    os_version: str | None = None
    device: str | None = None
    device_vendor: str | None = None
    device_model: str | None = None
    country: str | None = None
    region: str | None = None
    city: str | None = None
    timezone: str | None = None
    ip_address: str | None = None
    created_at: datetime
    last_active_at: datetime
    is_current: bool = False

    model_config = {"from_attributes": True}


class ProfileResponse(BaseModel):
    id: str
    email: str
    name: str | None = None
    professional_title: str | None = None
    institution: str | None = None
    two_factor_enabled: bool = False
    has_password: bool = True
    deletion_scheduled_at: datetime | None = None
    created_at: datetime
