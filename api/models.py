"""
API request and response models for Natours REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
catalog/models.py, which own the internal domain representation. Route
handlers map between the two.

Security: UserResponse has no password or reset-token field, so no code path
can serialize a credential by accident -- from_user() copies an explicit
allow-list of attributes.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from auth.models import User
from auth.tokens import BCRYPT_MAX_BYTES
from catalog.models import Review, Tour

_PASSWORD_MIN = 8
_PASSWORD_MAX = 72  # characters; the byte limit is checked separately


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class DifficultyEnum(str, Enum):
    easy = "easy"
    medium = "medium"
    difficult = "difficult"


# ---------------------------------------------------------------------------
# Shared error envelope
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str = "success"
    message: str


# ---------------------------------------------------------------------------
# Users -- requests
# ---------------------------------------------------------------------------


class _PasswordConfirmMixin(BaseModel):
    """Adds password + password_confirm with a cross-field equality check."""

    password: str = Field(min_length=_PASSWORD_MIN, max_length=_PASSWORD_MAX)
    password_confirm: str = Field(max_length=_PASSWORD_MAX)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        if len(value.encode("utf-8")) > BCRYPT_MAX_BYTES:
            raise ValueError(f"Password must be at most {BCRYPT_MAX_BYTES} bytes when UTF-8 encoded.")
        return value

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password != self.password_confirm:
            raise ValueError("Passwords are not the same!")
        return self


class SignupRequest(_PasswordConfirmMixin):
    """Request body for POST /api/v1/users/signup. Role is not accepted here."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=3, max_length=255)


class LoginRequest(BaseModel):
    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class ForgotPasswordRequest(BaseModel):
    email: str = Field(min_length=1, max_length=255)


class ResetPasswordRequest(_PasswordConfirmMixin):
    pass


class UpdatePasswordRequest(_PasswordConfirmMixin):
    password_current: str = Field(min_length=1, max_length=255)


class UpdateMeRequest(BaseModel):
    """Request body for PATCH /api/v1/users/updateMe. Only name and email are writable.

    password and password_confirm are declared so the route can reject them
    with a pointer to updateMyPassword instead of silently ignoring them.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email: Optional[str] = Field(default=None, min_length=3, max_length=255)
    password: Optional[str] = None
    password_confirm: Optional[str] = None


# ---------------------------------------------------------------------------
# Users -- responses
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Outward representation of a user. Never carries credential fields."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    email: str
    role: str
    photo: str

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(id=user.id, name=user.name, email=user.email, role=user.role, photo=user.photo)


class AuthResponse(BaseModel):
    """Response for every route that logs a user in (signup, login, reset, update)."""

    model_config = ConfigDict(frozen=True)

    status: str = "success"
    token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse


# ---------------------------------------------------------------------------
# Tours
# ---------------------------------------------------------------------------


class TourCreate(BaseModel):
    """Request body for POST /api/v1/tours."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=10, max_length=40)
    duration: int = Field(gt=0)
    max_group_size: int = Field(gt=0)
    difficulty: DifficultyEnum
    price: float = Field(gt=0)
    summary: str = Field(min_length=1)
    description: Optional[str] = None
    image_cover: Optional[str] = Field(default=None, max_length=255)


class TourPatch(BaseModel):
    """Request body for PATCH /api/v1/tours/{id}. All fields optional."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=10, max_length=40)
    duration: Optional[int] = Field(default=None, gt=0)
    max_group_size: Optional[int] = Field(default=None, gt=0)
    difficulty: Optional[DifficultyEnum] = None
    price: Optional[float] = Field(default=None, gt=0)
    summary: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    image_cover: Optional[str] = Field(default=None, max_length=255)


class TourResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    duration: int
    max_group_size: int
    difficulty: str
    price: float
    summary: str
    description: Optional[str]
    image_cover: Optional[str]
    ratings_average: float
    ratings_quantity: int
    created_at: str

    @classmethod
    def from_tour(cls, tour: Tour) -> "TourResponse":
        return cls(
            id=tour.id,
            name=tour.name,
            duration=tour.duration,
            max_group_size=tour.max_group_size,
            difficulty=tour.difficulty,
            price=tour.price,
            summary=tour.summary,
            description=tour.description,
            image_cover=tour.image_cover,
            ratings_average=tour.ratings_average,
            ratings_quantity=tour.ratings_quantity,
            created_at=tour.created_at,
        )


class ViewerInfo(BaseModel):
    """The logged-in visitor on soft-authenticated read routes."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    role: str


class TourListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    results: int
    tours: list[TourResponse]
    viewer: Optional[ViewerInfo] = None


class ReviewResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    tour_id: int
    user_id: int
    review: str
    rating: int
    created_at: str

    @classmethod
    def from_review(cls, review: Review) -> "ReviewResponse":
        return cls(
            id=review.id,
            tour_id=review.tour_id,
            user_id=review.user_id,
            review=review.review,
            rating=review.rating,
            created_at=review.created_at,
        )


class TourDetailResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    tour: TourResponse
    reviews: list[ReviewResponse]
    viewer: Optional[ViewerInfo] = None
    viewer_review: Optional[ReviewResponse] = None


# ---------------------------------------------------------------------------
# Reviews -- requests
# ---------------------------------------------------------------------------


class ReviewCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    review: str = Field(min_length=1, max_length=2000)
    rating: int = Field(ge=1, le=5)


class ReviewPatch(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    review: Optional[str] = Field(default=None, min_length=1, max_length=2000)
    rating: Optional[int] = Field(default=None, ge=1, le=5)
