from typing import Optional

from pydantic import BaseModel, EmailStr, Field, ValidationInfo, field_validator


class RegisterIn(BaseModel):
    firstName: str = Field(..., min_length=1)
    lastName: str = Field(..., min_length=1)
    username: str = Field(..., min_length=3)
    email: EmailStr
    password: str = Field(..., min_length=8)
    confirmPassword: str

    @field_validator("confirmPassword")
    @classmethod
    def _passwords_match(cls, v: str, info: ValidationInfo) -> str:
        if "password" in info.data and v != info.data["password"]:
            raise ValueError("Passwords do not match")
        return v


class LoginIn(BaseModel):
    emailOrUsername: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class ForgotPasswordIn(BaseModel):
    email: EmailStr


class ResetPasswordIn(BaseModel):
    password: str = Field(..., min_length=8)


class ProfileUpdateIn(BaseModel):
    firstName: str = Field(..., min_length=1)
    lastName: str = Field(..., min_length=1)
    username: str = Field(..., min_length=3)
    profilePictureUrl: Optional[str] = None
