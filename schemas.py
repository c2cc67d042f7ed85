from datetime import date, datetime, timezone
from enum import Enum
from typing import Annotated, List, Optional

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    constr,
    model_validator,
)
from pydantic.alias_generators import to_camel


class Category(str, Enum):
    FOOD_DINING = "Food & Dining"
    TRANSPORTATION = "Transportation"
    SHOPPING = "Shopping"
    ENTERTAINMENT = "Entertainment"
    BILLS_UTILITIES = "Bills & Utilities"
    HEALTHCARE = "Healthcare"
    EDUCATION = "Education"
    TRAVEL = "Travel"
    GROCERIES = "Groceries"
    PERSONAL_CARE = "Personal Care"
    GIFTS_DONATIONS = "Gifts & Donations"
    BUSINESS = "Business"
    OTHER = "Other"


class CamelModel(BaseModel):
    """Accepts snake_case or camelCase input, serializes as camelCase."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


def _lower_email(v: str) -> str:
    return v.strip().lower()


Email = Annotated[EmailStr, AfterValidator(_lower_email)]


# auth


class SignupRequest(CamelModel):
    name: constr(strip_whitespace=True, min_length=2, max_length=50)
    email: Email
    password: constr(min_length=6, max_length=128)


class VerifyOTPRequest(CamelModel):
    email: Email
    otp: constr(strip_whitespace=True, min_length=1, max_length=10)


class EmailRequest(CamelModel):
    email: Email


class LoginRequest(CamelModel):
    email: Email
    password: constr(min_length=1, max_length=128)


class ResetPasswordRequest(CamelModel):
    token: constr(strip_whitespace=True, min_length=1)
    password: constr(min_length=6, max_length=128)


class UserOut(CamelModel):
    id: int
    name: str
    email: str
    verified: bool
    created_at: Optional[datetime] = None
    last_login: Optional[datetime] = None


# expenses

Title = constr(strip_whitespace=True, min_length=1, max_length=100)
Tag = constr(strip_whitespace=True, min_length=1, max_length=20)
Notes = constr(strip_whitespace=True, max_length=500)


def _to_naive_utc(v: datetime) -> datetime:
    if v.tzinfo is not None:
        return v.astimezone(timezone.utc).replace(tzinfo=None)
    return v


UTCDatetime = Annotated[datetime, AfterValidator(_to_naive_utc)]


class ExpenseCreate(CamelModel):
    title: Title
    amount: float = Field(..., ge=0.01, allow_inf_nan=False)
    date: Optional[UTCDatetime] = None
    category: Category
    tags: List[Tag] = Field(default_factory=list)
    notes: Optional[Notes] = None


class ExpenseUpdate(CamelModel):
    title: Optional[Title] = None
    amount: Optional[float] = Field(default=None, ge=0.01, allow_inf_nan=False)
    date: Optional[UTCDatetime] = None
    category: Optional[Category] = None
    tags: Optional[List[Tag]] = None
    notes: Optional[Notes] = None

    @model_validator(mode="after")
    def reject_explicit_nulls(self):
        for name in ("title", "amount", "date", "category", "tags"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def changes(self) -> dict:
        data = self.model_dump(exclude_unset=True)
        if isinstance(data.get("category"), Category):
            data["category"] = data["category"].value
        return data


class ExpenseOut(CamelModel):
    id: int
    user_id: int
    title: str
    amount: float
    date: datetime
    category: str
    tags: List[str] = []
    notes: Optional[str] = None
    created_at: datetime


class RecentExpense(CamelModel):
    id: int
    title: str
    amount: float
    date: datetime
    category: str


# reports


class ReportFilters(CamelModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    category: Optional[str] = None
