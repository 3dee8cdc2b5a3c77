"""
Database Schemas

Pydantic models that validate documents before they reach MongoDB.
Each entity model maps to a collection named after the lowercased class:
- Tour -> "tour"
- User -> "user"
- Review -> "review"
- Booking -> "booking"

The *Update models carry the same constraints with every field optional and
are used for PATCH requests.
"""

from datetime import datetime
from typing import ClassVar, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

Difficulty = Literal["easy", "medium", "difficult"]
Role = Literal["user", "guide", "lead-guide", "admin"]


class GeoPoint(BaseModel):
    type: Literal["Point"] = "Point"
    coordinates: List[float] = Field(..., min_length=2, max_length=2, description="[lng, lat]")
    address: Optional[str] = None
    description: Optional[str] = None


class TourLocation(GeoPoint):
    day: Optional[int] = None


def _round_rating(v: Optional[float]) -> Optional[float]:
    return None if v is None else round(v, 1)


class Tour(BaseModel):
    """
    Tours collection schema
    Collection name: "tour"
    """
    name: str = Field(..., min_length=10, max_length=40, description="Unique tour name")
    duration: int = Field(..., gt=0, description="Duration in days")
    max_group_size: int = Field(..., gt=0)
    difficulty: Difficulty
    ratings_average: float = Field(4.5, ge=1, le=5)
    ratings_quantity: int = Field(0, ge=0)
    price: float = Field(..., gt=0)
    price_discount: Optional[float] = Field(None, ge=0)
    summary: Optional[str] = None
    description: Optional[str] = None
    image_cover: str = Field(..., description="Cover image file name")
    images: List[str] = []
    start_dates: List[datetime] = []
    secret_tour: bool = False
    start_location: Optional[GeoPoint] = None
    locations: List[TourLocation] = []
    guides: List[str] = []

    @field_validator("name", "summary", "description", mode="before")
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("ratings_average")
    @classmethod
    def round_rating(cls, v):
        return _round_rating(v)

    @model_validator(mode="after")
    def discount_below_price(self):
        if self.price_discount is not None and self.price_discount >= self.price:
            raise ValueError(f"The discount ({self.price_discount}) must be less than the price")
        return self


class PartialUpdate(BaseModel):
    """PATCH body: omitted fields stay untouched; null is only accepted for nullable_fields."""
    nullable_fields: ClassVar[Tuple[str, ...]] = ()

    @model_validator(mode="before")
    @classmethod
    def reject_nulls(cls, data):
        if isinstance(data, dict):
            nulls = [
                k for k, v in data.items()
                if v is None and k in cls.model_fields and k not in cls.nullable_fields
            ]
            if nulls:
                raise ValueError(f"{', '.join(nulls)} cannot be null")
        return data


class TourUpdate(PartialUpdate):
    nullable_fields: ClassVar[Tuple[str, ...]] = ("price_discount",)

    name: Optional[str] = Field(None, min_length=10, max_length=40)
    duration: Optional[int] = Field(None, gt=0)
    max_group_size: Optional[int] = Field(None, gt=0)
    difficulty: Optional[Difficulty] = None
    ratings_average: Optional[float] = Field(None, ge=1, le=5)
    ratings_quantity: Optional[int] = Field(None, ge=0)
    price: Optional[float] = Field(None, gt=0)
    price_discount: Optional[float] = Field(None, ge=0)
    summary: Optional[str] = None
    description: Optional[str] = None
    image_cover: Optional[str] = None
    images: Optional[List[str]] = None
    start_dates: Optional[List[datetime]] = None
    secret_tour: Optional[bool] = None
    start_location: Optional[GeoPoint] = None
    locations: Optional[List[TourLocation]] = None
    guides: Optional[List[str]] = None

    @field_validator("name", "summary", "description", mode="before")
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("ratings_average")
    @classmethod
    def round_rating(cls, v):
        return _round_rating(v)


class User(BaseModel):
    """
    Users collection schema
    Collection name: "user"
    """
    name: str = Field(..., min_length=1, description="Full name")
    email: EmailStr = Field(..., description="Email address, stored lowercased")
    photo: str = Field("default.jpg")
    role: Role = "user"
    password: str = Field(..., min_length=8)
    password_confirm: str

    @field_validator("email")
    @classmethod
    def lower_email(cls, v):
        return v.lower()

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password != self.password_confirm:
            raise ValueError("Password confirmation does not match")
        return self


class UserUpdate(PartialUpdate):
    """Admin-side user update; passwords cannot be changed here."""
    name: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    photo: Optional[str] = None
    role: Optional[Role] = None

    @field_validator("email")
    @classmethod
    def lower_email(cls, v):
        return v.lower() if v else v


class UpdateMe(PartialUpdate):
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    photo: Optional[str] = None

    @field_validator("email")
    @classmethod
    def lower_email(cls, v):
        return v.lower() if v else v


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    password: str = Field(..., min_length=8)
    password_confirm: str

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password != self.password_confirm:
            raise ValueError("Password confirmation does not match")
        return self


class UpdatePasswordRequest(ResetPasswordRequest):
    password_current: str


class Review(BaseModel):
    """
    Reviews collection schema
    Collection name: "review"
    """
    review: str = Field(..., min_length=1, description="Review text")
    rating: int = Field(..., ge=1, le=5)
    tour: str = Field(..., description="Tour ID")
    user: str = Field(..., description="User ID")


class ReviewCreate(BaseModel):
    """Request body; tour and user default from the route and the caller."""
    review: str = Field(..., min_length=1)
    rating: int = Field(..., ge=1, le=5)
    tour: Optional[str] = None
    user: Optional[str] = None


class ReviewUpdate(PartialUpdate):
    review: Optional[str] = Field(None, min_length=1)
    rating: Optional[int] = Field(None, ge=1, le=5)


class Booking(BaseModel):
    """
    Bookings collection schema
    Collection name: "booking"
    """
    tour: str = Field(..., description="Tour ID")
    user: str = Field(..., description="User ID")
    price: float = Field(..., gt=0)
    paid: bool = True
    checkout_session_id: Optional[str] = None


class BookingUpdate(PartialUpdate):
    price: Optional[float] = Field(None, gt=0)
    paid: Optional[bool] = None
