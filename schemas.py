import datetime as dt
import re
from decimal import Decimal
from typing import Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from amounts import MAX_AMOUNT
from errors import ValidationError
from models import TransactionType

HEX_COLOR_PATTERN = r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$"
EMAIL_RE = re.compile(r"^\w+([.-]?\w+)*@\w+([.-]?\w+)*(\.\w{2,3})+$")

SchemaT = TypeVar("SchemaT", bound=BaseModel)


def parse_input(schema: type[SchemaT], **fields: object) -> SchemaT:
    """Build ``schema`` from keyword fields, reporting the first bad field."""
    try:
        return schema(**fields)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or None
        raise ValidationError(f"{field}: {first['msg']}", field=field) from exc


def _normalize_category_name(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    clean = value.strip().lower()
    if not clean:
        raise ValueError("Name is required")
    return clean


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType
    color: Optional[str] = Field(default=None, pattern=HEX_COLOR_PATTERN)

    @field_validator("name")
    @classmethod
    def normalize_name(cls, value: Optional[str]) -> Optional[str]:
        return _normalize_category_name(value)


class CategoryUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    type: Optional[TransactionType] = None
    color: Optional[str] = Field(default=None, pattern=HEX_COLOR_PATTERN)

    @field_validator("name")
    @classmethod
    def normalize_name(cls, value: Optional[str]) -> Optional[str]:
        return _normalize_category_name(value)


def _clean_description(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    clean = value.strip()
    if not clean:
        raise ValueError("Description is required")
    return clean


class TransactionIn(BaseModel):
    type: TransactionType
    amount: Decimal = Field(..., ge=0, le=MAX_AMOUNT, decimal_places=2)
    description: str = Field(..., max_length=500)
    category_id: int
    date: Optional[dt.date] = None

    @field_validator("description")
    @classmethod
    def clean_description(cls, value: Optional[str]) -> Optional[str]:
        return _clean_description(value)


class TransactionUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Optional[TransactionType] = None
    amount: Optional[Decimal] = Field(
        default=None, ge=0, le=MAX_AMOUNT, decimal_places=2
    )
    description: Optional[str] = Field(default=None, max_length=500)
    category_id: Optional[int] = None
    date: Optional[dt.date] = None

    @field_validator("description")
    @classmethod
    def clean_description(cls, value: Optional[str]) -> Optional[str]:
        return _clean_description(value)


def _check_password_length(value: str) -> str:
    if len(value.encode("utf-8")) > 72:
        raise ValueError("Password cannot be longer than 72 bytes")
    return value


def _clean_email(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    clean = value.strip().lower()
    if not EMAIL_RE.match(clean):
        raise ValueError("Please add a valid email")
    return clean


def _clean_name(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    clean = value.strip()
    if not clean:
        raise ValueError("Name is required")
    return clean


class RegisterIn(BaseModel):
    name: str = Field(..., max_length=100)
    email: str = Field(..., max_length=254)
    password: str = Field(..., min_length=6, max_length=72)

    @field_validator("password")
    @classmethod
    def check_password_length(cls, value: str) -> str:
        return _check_password_length(value)

    @field_validator("name")
    @classmethod
    def clean_name(cls, value: Optional[str]) -> Optional[str]:
        return _clean_name(value)

    @field_validator("email")
    @classmethod
    def clean_email(cls, value: Optional[str]) -> Optional[str]:
        return _clean_email(value)


class LoginIn(BaseModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return value.strip().lower()


class ProfileUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, max_length=100)
    email: Optional[str] = Field(default=None, max_length=254)

    @field_validator("name")
    @classmethod
    def clean_name(cls, value: Optional[str]) -> Optional[str]:
        return _clean_name(value)

    @field_validator("email")
    @classmethod
    def clean_email(cls, value: Optional[str]) -> Optional[str]:
        return _clean_email(value)


class PasswordChangeIn(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6, max_length=72)

    @field_validator("new_password")
    @classmethod
    def check_password_length(cls, value: str) -> str:
        return _check_password_length(value)


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    created_at: dt.datetime


class TokenOut(BaseModel):
    token: str
    user: UserOut


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: TransactionType
    color: str
    is_default: bool


class TransactionCategoryOut(BaseModel):
    id: int
    name: str
    color: str
    type: TransactionType


class TransactionOut(BaseModel):
    id: int
    type: TransactionType
    amount: float
    description: str
    date: dt.date
    category: Optional[TransactionCategoryOut]


class PaginationOut(BaseModel):
    total: int
    page: int
    pages: int


class TransactionPageOut(BaseModel):
    cashflows: list[TransactionOut]
    pagination: PaginationOut


class SummaryTransactionOut(BaseModel):
    id: int
    date: dt.date
    amount: float
    type: TransactionType
    category: str


class DistributionEntryOut(BaseModel):
    id: Optional[int]
    name: str
    color: str
    amount: float
    percentage: int


class CategoryDistributionOut(BaseModel):
    income: list[DistributionEntryOut]
    expense: list[DistributionEntryOut]


class SummaryOut(BaseModel):
    total_income: float
    total_expense: float
    balance: float
    transactions: list[SummaryTransactionOut]
    category_distribution: CategoryDistributionOut
