from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy import and_, delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, contains_eager

from amounts import from_cents, percent_of, to_cents
from auth import check_password, hash_password
from errors import (
    AuthenticationError,
    DuplicateError,
    NotFoundError,
    ProtectedCategoryError,
    StoreError,
    ValidationError,
    store_errors,
)
from models import DEFAULT_CATEGORY_COLOR, Category, Transaction, TransactionType, User
from periods import DateInput, DateRange, resolve_range
from schemas import (
    CategoryIn,
    CategoryUpdate,
    PasswordChangeIn,
    ProfileUpdate,
    RegisterIn,
    TransactionIn,
    TransactionUpdate,
    parse_input,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
DEFAULT_SUMMARY_LIMIT = 30

UNCATEGORIZED = "Uncategorized"
UNCATEGORIZED_COLOR = "#9e9e9e"


def _commit(
    session: Session, action: str, *, duplicate: Optional[str] = None
) -> None:
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        if duplicate:
            raise DuplicateError(duplicate) from exc
        raise StoreError(f"Store failure while trying to {action}") from exc
    except SQLAlchemyError as exc:
        session.rollback()
        raise StoreError(f"Store failure while trying to {action}") from exc


def _reject_nulls(changes: dict[str, object], fields: tuple[str, ...]) -> None:
    for name in fields:
        if name in changes and changes[name] is None:
            raise ValidationError(f"{name} cannot be empty", field=name)


def _coerce_type(value: Union[TransactionType, str, None]) -> Optional[TransactionType]:
    if value is None or value == "":
        return None
    try:
        return TransactionType(value)
    except ValueError as exc:
        raise ValidationError(
            "Type must be either income or expense", field="type"
        ) from exc


@dataclass
class TransactionFilters:
    start_date: DateInput = None
    end_date: DateInput = None
    category_id: Optional[int] = None
    type: Union[TransactionType, str, None] = None
    page: int = 1
    page_size: Optional[int] = None


@dataclass
class TransactionPage:
    items: list[Transaction] = field(default_factory=list)
    total: int = 0
    page: int = 1
    pages: int = 0


class CategoryService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.name, Category.id)
        )
        with store_errors("list categories"):
            return list(self.session.scalars(stmt).all())

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise NotFoundError("Category not found")
        return category

    def _name_taken(self, name: str, exclude_id: Optional[int] = None) -> bool:
        stmt = select(Category.id).where(
            Category.user_id == self.user_id, Category.name == name
        )
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        return self.session.scalar(stmt) is not None

    def create(
        self,
        name: str,
        type: Union[TransactionType, str],
        color: Optional[str] = None,
    ) -> Category:
        data = parse_input(CategoryIn, name=name, type=type, color=color)
        if self._name_taken(data.name):
            raise DuplicateError("Category already exists")

        category = Category(
            user_id=self.user_id,
            name=data.name,
            type=data.type,
            color=data.color or DEFAULT_CATEGORY_COLOR,
        )
        self.session.add(category)
        _commit(self.session, "create category", duplicate="Category already exists")
        self.session.refresh(category)
        logger.info(
            f"category_created: user_id={self.user_id} category_id={category.id}"
        )
        return category

    def update(self, category_id: int, **fields: object) -> Category:
        category = self.get(category_id)
        changes = parse_input(CategoryUpdate, **fields).model_dump(exclude_unset=True)
        _reject_nulls(changes, ("name", "type"))

        name = changes.get("name")
        if name is not None and name != category.name:
            if self._name_taken(name, exclude_id=category.id):
                raise DuplicateError("Category name already exists")
            category.name = name
        if "type" in changes:
            category.type = changes["type"]
        if "color" in changes:
            category.color = changes["color"] or DEFAULT_CATEGORY_COLOR

        _commit(self.session, "update category", duplicate="Category already exists")
        self.session.refresh(category)
        return category

    def delete(self, category_id: int) -> None:
        category = self.get(category_id)
        if category.is_default:
            raise ProtectedCategoryError("Cannot delete default category")
        # Referencing transactions keep existing with a NULL category.
        self.session.delete(category)
        _commit(self.session, "delete category")
        logger.info(
            f"category_deleted: user_id={self.user_id} category_id={category_id}"
        )


class TransactionService:
    def __init__(
        self,
        session: Session,
        user_id: int,
        *,
        default_page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.default_page_size = default_page_size

    def _owned_category(self, category_id: int) -> Category:
        return CategoryService(self.session, self.user_id).get(category_id)

    def create(
        self,
        type: Union[TransactionType, str],
        amount: Union[Decimal, int, float, str],
        description: str,
        category_id: Optional[int],
        date: DateInput = None,
    ) -> Transaction:
        data = parse_input(
            TransactionIn,
            type=type,
            amount=amount,
            description=description,
            category_id=category_id,
            date=date,
        )
        self._owned_category(data.category_id)

        txn = Transaction(
            user_id=self.user_id,
            type=data.type,
            amount_cents=to_cents(data.amount),
            description=data.description,
            category_id=data.category_id,
            date=data.date or datetime.now().date(),
        )
        self.session.add(txn)
        _commit(self.session, "create transaction")
        self.session.refresh(txn)
        logger.info(
            f"transaction_created: user_id={self.user_id} transaction_id={txn.id}"
        )
        return txn

    def get(self, transaction_id: int) -> Transaction:
        stmt = select(Transaction).where(
            Transaction.user_id == self.user_id, Transaction.id == transaction_id
        )
        with store_errors("load transaction"):
            txn = self.session.scalar(stmt)
        if not txn:
            raise NotFoundError("Transaction not found")
        return txn

    def _apply_filters(self, stmt, filters: TransactionFilters, period: DateRange):
        if period.start is not None:
            stmt = stmt.where(Transaction.date >= period.start)
        if period.end is not None:
            stmt = stmt.where(Transaction.date <= period.end)
        txn_type = _coerce_type(filters.type)
        if txn_type:
            stmt = stmt.where(Transaction.type == txn_type)
        if filters.category_id is not None:
            stmt = stmt.where(Transaction.category_id == filters.category_id)
        return stmt

    def list(self, filters: Optional[TransactionFilters] = None) -> TransactionPage:
        filters = filters or TransactionFilters()
        period = resolve_range(filters.start_date, filters.end_date)
        page = filters.page
        page_size = filters.page_size or self.default_page_size
        if page < 1:
            raise ValidationError("Page must be at least 1", field="page")
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValidationError(
                f"Page size must be between 1 and {MAX_PAGE_SIZE}", field="page_size"
            )

        # Inner join drops orphans: deleted categories and other users' ones.
        owned_category = and_(
            Category.id == Transaction.category_id,
            Category.user_id == self.user_id,
        )
        count_stmt = self._apply_filters(
            select(func.count(Transaction.id))
            .select_from(Transaction)
            .join(Category, owned_category)
            .where(Transaction.user_id == self.user_id),
            filters,
            period,
        )
        items_stmt = (
            self._apply_filters(
                select(Transaction)
                .join(Category, owned_category)
                .options(contains_eager(Transaction.category))
                .where(Transaction.user_id == self.user_id),
                filters,
                period,
            )
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        with store_errors("list transactions"):
            total = int(self.session.execute(count_stmt).scalar_one() or 0)
            items = list(self.session.scalars(items_stmt).all())
        return TransactionPage(
            items=items,
            total=total,
            page=page,
            pages=math.ceil(total / page_size),
        )

    def window(self, period: DateRange, limit: Optional[int]) -> list[Transaction]:
        """Newest-first transactions inside ``period``, orphans included."""
        stmt = (
            select(Transaction)
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        stmt = self._apply_filters(stmt, TransactionFilters(), period)
        if limit is not None:
            stmt = stmt.limit(limit)
        with store_errors("load transactions"):
            return list(self.session.scalars(stmt).all())

    def update(self, transaction_id: int, **fields: object) -> Transaction:
        txn = self.get(transaction_id)
        changes = parse_input(TransactionUpdate, **fields).model_dump(
            exclude_unset=True
        )
        _reject_nulls(
            changes, ("type", "amount", "description", "category_id", "date")
        )

        # Presence, not truthiness: an explicit amount of 0 is applied.
        if "category_id" in changes:
            self._owned_category(changes["category_id"])
            txn.category_id = changes["category_id"]
        if "type" in changes:
            txn.type = changes["type"]
        if "amount" in changes:
            txn.amount_cents = to_cents(changes["amount"])
        if "description" in changes:
            txn.description = changes["description"]
        if "date" in changes:
            txn.date = changes["date"]

        _commit(self.session, "update transaction")
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        _commit(self.session, "delete transaction")
        logger.info(
            f"transaction_deleted: user_id={self.user_id} transaction_id={transaction_id}"
        )


class SummaryService:
    """Totals, balance and per-category distribution for one user.

    Works on a window of the user's transactions: an explicit date range, or
    the most recent ``limit`` records when no range is given. Both the totals
    and the distribution are folded from the same window, so every type's
    buckets add up to that type's total. Transactions whose category cannot
    be resolved for the user land in the ``Uncategorized`` bucket.
    """

    def __init__(
        self,
        session: Session,
        user_id: int,
        *,
        default_limit: int = DEFAULT_SUMMARY_LIMIT,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.default_limit = default_limit

    def summary(
        self,
        start_date: DateInput = None,
        end_date: DateInput = None,
        limit: Optional[int] = None,
    ) -> dict[str, object]:
        period = resolve_range(start_date, end_date)
        if limit is not None and limit < 1:
            raise ValidationError("Limit must be at least 1", field="limit")
        if limit is None and not period.is_bounded:
            limit = self.default_limit

        transactions = TransactionService(self.session, self.user_id).window(
            period, limit
        )
        categories = {
            c.id: c for c in CategoryService(self.session, self.user_id).list_all()
        }

        totals = {t: 0 for t in TransactionType}
        buckets: dict[TransactionType, dict[Optional[int], int]] = {
            t: {} for t in TransactionType
        }
        rows = []
        for txn in transactions:
            category = categories.get(txn.category_id)
            if category is None:
                key, label = None, UNCATEGORIZED
            else:
                key, label = category.id, category.name
            totals[txn.type] += txn.amount_cents
            bucket = buckets[txn.type]
            bucket[key] = bucket.get(key, 0) + txn.amount_cents
            rows.append(
                {
                    "id": txn.id,
                    "date": txn.date,
                    "amount": from_cents(txn.amount_cents),
                    "type": txn.type,
                    "category": label,
                }
            )

        distribution = {
            t.value: self._distribution(buckets[t], totals[t], categories)
            for t in TransactionType
        }
        income = totals[TransactionType.income]
        expense = totals[TransactionType.expense]
        logger.debug(
            f"summary: user_id={self.user_id} transactions={len(transactions)}"
        )
        return {
            "total_income": from_cents(income),
            "total_expense": from_cents(expense),
            "balance": from_cents(income - expense),
            "transactions": rows,
            "category_distribution": distribution,
        }

    @staticmethod
    def _distribution(
        bucket: dict[Optional[int], int],
        subtotal: int,
        categories: dict[int, Category],
    ) -> list[dict[str, object]]:
        entries = []
        for category_id, amount in bucket.items():
            if category_id is None:
                name, color = UNCATEGORIZED, UNCATEGORIZED_COLOR
            else:
                name = categories[category_id].name
                color = categories[category_id].color
            entries.append(
                {
                    "id": category_id,
                    "name": name,
                    "color": color,
                    "amount": from_cents(amount),
                    "percentage": percent_of(amount, subtotal),
                }
            )
        entries.sort(key=lambda e: (-e["amount"], e["name"]))
        return entries


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _email_taken(self, email: str, exclude_id: Optional[int] = None) -> bool:
        stmt = select(User.id).where(User.email == email)
        if exclude_id is not None:
            stmt = stmt.where(User.id != exclude_id)
        return self.session.scalar(stmt) is not None

    def register(self, name: str, email: str, password: str) -> User:
        data = parse_input(RegisterIn, name=name, email=email, password=password)
        if self._email_taken(data.email):
            raise DuplicateError("Email is already in use")
        user = User(
            name=data.name,
            email=data.email,
            password_hash=hash_password(data.password),
        )
        self.session.add(user)
        _commit(self.session, "register user", duplicate="Email is already in use")
        self.session.refresh(user)
        logger.info(f"user_registered: user_id={user.id}")
        return user

    def authenticate(self, email: str, password: str) -> User:
        user = self.session.scalar(
            select(User).where(User.email == (email or "").strip().lower())
        )
        if not user or not check_password(password or "", user.password_hash):
            raise AuthenticationError("Invalid credentials")
        return user

    def get(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def update_profile(self, user_id: int, **fields: object) -> User:
        user = self.get(user_id)
        changes = parse_input(ProfileUpdate, **fields).model_dump(exclude_unset=True)
        _reject_nulls(changes, ("name", "email"))
        if "email" in changes and changes["email"] != user.email:
            if self._email_taken(changes["email"], exclude_id=user.id):
                raise DuplicateError("Email is already in use")
            user.email = changes["email"]
        if "name" in changes:
            user.name = changes["name"]
        _commit(self.session, "update profile", duplicate="Email is already in use")
        self.session.refresh(user)
        return user

    def change_password(
        self, user_id: int, current_password: str, new_password: str
    ) -> User:
        data = parse_input(
            PasswordChangeIn,
            current_password=current_password,
            new_password=new_password,
        )
        user = self.get(user_id)
        if not check_password(data.current_password, user.password_hash):
            raise AuthenticationError("Current password is incorrect")
        user.password_hash = hash_password(data.new_password)
        user.password_changed_at = datetime.utcnow()
        _commit(self.session, "change password")
        logger.info(f"password_changed: user_id={user.id}")
        return user

    def delete(self, user_id: int) -> None:
        user = self.get(user_id)
        with store_errors("delete user"):
            self.session.execute(
                delete(Transaction).where(Transaction.user_id == user.id)
            )
            self.session.execute(delete(Category).where(Category.user_id == user.id))
            self.session.delete(user)
        _commit(self.session, "delete user")
        logger.info(f"user_deleted: user_id={user_id}")
