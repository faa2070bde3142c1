"""Scoped access to the category and transaction stores.

Everything that reads or writes user data goes through ``Store.for_user``;
the services it hands out are bound to one user id and put that id into
every query they issue. A record owned by someone else is reported as
missing, exactly like a record that does not exist.
"""

from typing import Optional

from sqlalchemy.orm import Session

from config import Settings
from errors import AuthenticationError
from services import (
    DEFAULT_PAGE_SIZE,
    DEFAULT_SUMMARY_LIMIT,
    CategoryService,
    SummaryService,
    TransactionService,
    UserService,
)


class ScopedStore:
    def __init__(
        self,
        session: Session,
        user_id: int,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        summary_limit: int = DEFAULT_SUMMARY_LIMIT,
    ) -> None:
        self.user_id = user_id
        self.categories = CategoryService(session, user_id)
        self.transactions = TransactionService(
            session, user_id, default_page_size=page_size
        )
        self.summary = SummaryService(session, user_id, default_limit=summary_limit)


class Store:
    def __init__(self, session: Session, settings: Optional[Settings] = None) -> None:
        self.session = session
        self.settings = settings

    @property
    def users(self) -> UserService:
        return UserService(self.session)

    def for_user(self, user_id: Optional[int]) -> ScopedStore:
        if user_id is None:
            raise AuthenticationError("Not authorized")
        if self.settings is None:
            return ScopedStore(self.session, user_id)
        return ScopedStore(
            self.session,
            user_id,
            page_size=self.settings.page_size,
            summary_limit=self.settings.summary_limit,
        )
