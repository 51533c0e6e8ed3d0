from datetime import datetime
from typing import Annotated, ClassVar, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, StringConstraints, model_validator
from pydantic.alias_generators import to_camel

Role = Literal["user", "guide", "lead-guide", "admin"]
Difficulty = Literal["easy", "medium", "difficult"]
Password = Annotated[str, StringConstraints(min_length=8)]
Rating = Annotated[float, Field(ge=1, le=5)]
TourName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=10, max_length=40)]
Text = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class APIModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class PartialUpdate(APIModel):
    """
    Body of a PATCH request.

    Omitted fields are left untouched. An explicit null is accepted only for
    the fields listed in ``nullable``, the others must hold a value.
    """

    nullable: ClassVar[frozenset] = frozenset()

    @model_validator(mode="after")
    def check_nulls(self):
        for name in sorted(self.model_fields_set):
            if getattr(self, name) is None and name not in self.nullable:
                raise ValueError(f"{to_camel(name)} cannot be null")
        return self


def dump(schema: type[BaseModel], obj) -> dict:
    return schema.model_validate(obj).model_dump(by_alias=True, mode="json")


def _passwords_match(password: Optional[str], password_confirm: Optional[str]) -> None:
    if password != password_confirm:
        raise ValueError("Passwords are not the same")


# ----- Users -----
class UserOut(APIModel):
    id: int
    name: str
    email: EmailStr
    photo: str
    role: Role
    version: int


class UserSummary(APIModel):
    id: int
    name: str
    photo: str


class SignupIn(APIModel):
    name: Text
    email: EmailStr
    password: Password
    password_confirm: str

    @model_validator(mode="after")
    def check_passwords(self):
        _passwords_match(self.password, self.password_confirm)
        return self


class LoginIn(APIModel):
    email: EmailStr
    password: str


class ForgotPasswordIn(APIModel):
    email: EmailStr


class ResetPasswordIn(APIModel):
    password: Password
    password_confirm: str

    @model_validator(mode="after")
    def check_passwords(self):
        _passwords_match(self.password, self.password_confirm)
        return self


class UpdatePasswordIn(APIModel):
    password_current: str
    password: Password
    password_confirm: str

    @model_validator(mode="after")
    def check_passwords(self):
        _passwords_match(self.password, self.password_confirm)
        return self


class UpdateMeIn(PartialUpdate):
    nullable = frozenset({"password", "password_confirm"})

    name: Optional[Text] = None
    email: Optional[EmailStr] = None
    # only accepted to be rejected with a pointer to /updateMyPassword
    password: Optional[str] = None
    password_confirm: Optional[str] = None


class UserAdminUpdate(PartialUpdate):
    name: Optional[Text] = None
    email: Optional[EmailStr] = None
    role: Optional[Role] = None
    photo: Optional[str] = None
    active: Optional[bool] = None


# ----- Tours -----
class GeoPoint(APIModel):
    type: Literal["Point"] = "Point"
    # [longitude, latitude]
    coordinates: Annotated[List[float], Field(min_length=2, max_length=2)]
    address: Optional[str] = None
    description: Optional[str] = None


class TourLocation(GeoPoint):
    day: Optional[int] = None


def _check_discount(price: Optional[float], price_discount: Optional[float]) -> None:
    if price is not None and price_discount is not None and price_discount >= price:
        raise ValueError(f"Discount price ({price_discount}) must be below regular price")


class TourCreate(APIModel):
    name: TourName
    duration: Annotated[int, Field(gt=0)]
    max_group_size: Annotated[int, Field(gt=0)]
    difficulty: Difficulty
    ratings_average: Rating = 4.5
    ratings_quantity: Annotated[int, Field(ge=0)] = 0
    price: Annotated[float, Field(gt=0)]
    price_discount: Optional[Annotated[float, Field(ge=0)]] = None
    summary: Text
    description: Optional[str] = None
    image_cover: str
    images: List[str] = []
    start_dates: List[datetime] = []
    secret_tour: bool = False
    start_location: Optional[GeoPoint] = None
    locations: List[TourLocation] = []
    guides: List[int] = []

    @model_validator(mode="after")
    def check_discount(self):
        _check_discount(self.price, self.price_discount)
        return self


class TourUpdate(PartialUpdate):
    nullable = frozenset({"price_discount", "description", "start_location"})

    name: Optional[TourName] = None
    duration: Optional[Annotated[int, Field(gt=0)]] = None
    max_group_size: Optional[Annotated[int, Field(gt=0)]] = None
    difficulty: Optional[Difficulty] = None
    price: Optional[Annotated[float, Field(gt=0)]] = None
    price_discount: Optional[Annotated[float, Field(ge=0)]] = None
    summary: Optional[Text] = None
    description: Optional[str] = None
    image_cover: Optional[str] = None
    images: Optional[List[str]] = None
    start_dates: Optional[List[datetime]] = None
    secret_tour: Optional[bool] = None
    start_location: Optional[GeoPoint] = None
    locations: Optional[List[TourLocation]] = None
    guides: Optional[List[int]] = None

    @model_validator(mode="after")
    def check_discount(self):
        _check_discount(self.price, self.price_discount)
        return self


class GuideOut(APIModel):
    id: int
    name: str
    email: EmailStr
    photo: str
    role: Role


class TourOut(APIModel):
    id: int
    name: str
    slug: str
    duration: int
    duration_weeks: float
    max_group_size: int
    difficulty: Difficulty
    ratings_average: float
    ratings_quantity: int
    price: float
    price_discount: Optional[float] = None
    summary: str
    description: Optional[str] = None
    image_cover: str
    images: List[str]
    created_at: datetime
    start_dates: List[datetime]
    secret_tour: bool
    start_location: Optional[GeoPoint] = None
    locations: List[TourLocation]
    guides: List[GuideOut]
    version: int


# ----- Reviews -----
class ReviewCreate(APIModel):
    review: Text
    rating: Rating
    # filled from the path on nested routes
    tour_id: Optional[int] = None


class ReviewUpdate(PartialUpdate):
    review: Optional[Text] = None
    rating: Optional[Rating] = None


class ReviewOut(APIModel):
    id: int
    review: str
    rating: float
    created_at: datetime
    tour_id: int
    user: UserSummary
    version: int


class TourDetailOut(TourOut):
    reviews: List[ReviewOut]


# ----- Bookings -----
class BookingCreate(APIModel):
    tour_id: int
    user_id: int
    price: Annotated[float, Field(ge=0)]
    paid: bool = True


class BookingUpdate(PartialUpdate):
    price: Optional[Annotated[float, Field(ge=0)]] = None
    paid: Optional[bool] = None


class BookingTourOut(APIModel):
    id: int
    name: str


class BookingOut(APIModel):
    id: int
    price: float
    paid: bool
    created_at: datetime
    user: UserOut
    tour: BookingTourOut
    version: int
