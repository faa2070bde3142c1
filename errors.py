from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy.exc import SQLAlchemyError


class BudgetError(Exception):
    pass


class ValidationError(BudgetError, ValueError):
    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field


class NotFoundError(BudgetError, ValueError):
    pass


class DuplicateError(BudgetError, ValueError):
    pass


class ProtectedCategoryError(BudgetError, ValueError):
    pass


class AuthenticationError(BudgetError, ValueError):
    pass


class StoreError(BudgetError, RuntimeError):
    pass


@contextmanager
def store_errors(action: str) -> Iterator[None]:
    """Re-raise persistence failures as StoreError; detail stays in the chain."""
    try:
        yield
    except SQLAlchemyError as exc:
        raise StoreError(f"Store failure while trying to {action}") from exc
