import logging
import tomllib
from typing import Iterator, Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from amounts import from_cents
from auth import issue_token, user_from_token
from config import Settings, get_settings
from database import create_db_engine, create_session_factory, session_scope
from errors import (
    AuthenticationError,
    DuplicateError,
    NotFoundError,
    ProtectedCategoryError,
    StoreError,
    ValidationError,
)
from models import Transaction, User
from periods import resolve_range
from schemas import (
    CategoryIn,
    CategoryOut,
    CategoryUpdate,
    LoginIn,
    PasswordChangeIn,
    ProfileUpdate,
    RegisterIn,
    SummaryOut,
    TokenOut,
    TransactionCategoryOut,
    TransactionIn,
    TransactionOut,
    TransactionPageOut,
    TransactionUpdate,
    UserOut,
)
from services import TransactionFilters
from store import ScopedStore, Store

logger = logging.getLogger("budget")


def _load_app_version() -> str:
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError):
        return "unknown"
    return str(data.get("project", {}).get("version", "unknown"))


APP_VERSION = _load_app_version()

bearer = HTTPBearer(auto_error=False)
router = APIRouter(prefix="/api")


def get_db(request: Request) -> Iterator[Session]:
    with session_scope(request.app.state.session_factory) as session:
        yield session


def get_store(request: Request, db: Session = Depends(get_db)) -> Store:
    return Store(db, request.app.state.settings)


def current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    db: Session = Depends(get_db),
) -> User:
    if credentials is None:
        raise AuthenticationError("Not authorized")
    return user_from_token(db, credentials.credentials, request.app.state.settings)


def scoped_store(
    store: Store = Depends(get_store), user: User = Depends(current_user)
) -> ScopedStore:
    return store.for_user(user.id)


def transaction_out(txn: Transaction) -> TransactionOut:
    category = None
    if txn.category is not None and txn.category.user_id == txn.user_id:
        category = TransactionCategoryOut(
            id=txn.category.id,
            name=txn.category.name,
            color=txn.category.color,
            type=txn.category.type,
        )
    return TransactionOut(
        id=txn.id,
        type=txn.type,
        amount=float(from_cents(txn.amount_cents)),
        description=txn.description,
        date=txn.date,
        category=category,
    )


def _error(status_code: int, message: str, **extra: object) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": message, **extra})


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationError)
    def on_validation_error(_request: Request, exc: ValidationError):
        return _error(400, exc.message, field=exc.field)

    @app.exception_handler(NotFoundError)
    def on_not_found(_request: Request, exc: NotFoundError):
        return _error(404, str(exc))

    @app.exception_handler(DuplicateError)
    def on_duplicate(_request: Request, exc: DuplicateError):
        return _error(400, str(exc))

    @app.exception_handler(ProtectedCategoryError)
    def on_protected(_request: Request, exc: ProtectedCategoryError):
        return _error(400, str(exc))

    @app.exception_handler(AuthenticationError)
    def on_auth_error(_request: Request, exc: AuthenticationError):
        return _error(401, str(exc))

    @app.exception_handler(StoreError)
    def on_store_error(request: Request, exc: StoreError):
        logger.exception(f"store_error: path={request.url.path}", exc_info=exc)
        return _error(500, "Server error")

    @app.exception_handler(SQLAlchemyError)
    def on_sqlalchemy_error(request: Request, exc: SQLAlchemyError):
        logger.exception(f"store_error: path={request.url.path}", exc_info=exc)
        return _error(500, "Server error")


def create_app(
    settings: Optional[Settings] = None, engine: Optional[Engine] = None
) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level)

    app = FastAPI(title="Budget Tracker", version=APP_VERSION)
    app.state.settings = settings
    app.state.engine = engine or create_db_engine(settings.database_url)
    app.state.session_factory = create_session_factory(app.state.engine)
    register_error_handlers(app)
    app.include_router(router)
    logger.info(f"app_created: version={APP_VERSION}")
    return app


@router.get("/health")
def health():
    return {"status": "ok", "version": APP_VERSION}


@router.post("/auth/register", response_model=TokenOut, status_code=201)
def register(payload: RegisterIn, request: Request, store: Store = Depends(get_store)):
    user = store.users.register(payload.name, payload.email, payload.password)
    token = issue_token(user, request.app.state.settings)
    return TokenOut(token=token, user=UserOut.model_validate(user))


@router.post("/auth/login", response_model=TokenOut)
def login(payload: LoginIn, request: Request, store: Store = Depends(get_store)):
    user = store.users.authenticate(payload.email, payload.password)
    token = issue_token(user, request.app.state.settings)
    return TokenOut(token=token, user=UserOut.model_validate(user))


@router.get("/users/me", response_model=UserOut)
def get_me(user: User = Depends(current_user)):
    return user


@router.put("/users/me", response_model=UserOut)
def update_me(
    payload: ProfileUpdate,
    user: User = Depends(current_user),
    store: Store = Depends(get_store),
):
    return store.users.update_profile(user.id, **payload.model_dump(exclude_unset=True))


@router.put("/users/change-password")
def change_password(
    payload: PasswordChangeIn,
    request: Request,
    user: User = Depends(current_user),
    store: Store = Depends(get_store),
):
    user = store.users.change_password(
        user.id, payload.current_password, payload.new_password
    )
    return {
        "message": "Password changed successfully",
        "token": issue_token(user, request.app.state.settings),
    }


@router.delete("/users/me")
def delete_me(user: User = Depends(current_user), store: Store = Depends(get_store)):
    store.users.delete(user.id)
    return {"message": "User and all associated data deleted"}


@router.get("/categories", response_model=list[CategoryOut])
def list_categories(scope: ScopedStore = Depends(scoped_store)):
    return scope.categories.list_all()


@router.post("/categories", response_model=CategoryOut, status_code=201)
def create_category(payload: CategoryIn, scope: ScopedStore = Depends(scoped_store)):
    return scope.categories.create(payload.name, payload.type, payload.color)


@router.get("/categories/{category_id}", response_model=CategoryOut)
def get_category(category_id: int, scope: ScopedStore = Depends(scoped_store)):
    return scope.categories.get(category_id)


@router.put("/categories/{category_id}", response_model=CategoryOut)
def update_category(
    category_id: int,
    payload: CategoryUpdate,
    scope: ScopedStore = Depends(scoped_store),
):
    return scope.categories.update(
        category_id, **payload.model_dump(exclude_unset=True)
    )


@router.delete("/categories/{category_id}")
def delete_category(category_id: int, scope: ScopedStore = Depends(scoped_store)):
    scope.categories.delete(category_id)
    return {"message": "Category removed"}


@router.get("/cashflow", response_model=TransactionPageOut)
def list_cashflow(
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    category: Optional[int] = None,
    type: Optional[str] = None,
    page: int = 1,
    limit: Optional[int] = None,
    scope: ScopedStore = Depends(scoped_store),
):
    result = scope.transactions.list(
        TransactionFilters(
            start_date=start_date,
            end_date=end_date,
            category_id=category,
            type=type,
            page=page,
            page_size=limit,
        )
    )
    return {
        "cashflows": [transaction_out(txn) for txn in result.items],
        "pagination": {
            "total": result.total,
            "page": result.page,
            "pages": result.pages,
        },
    }


@router.get("/cashflow/summary", response_model=SummaryOut)
def cashflow_summary(
    start: Optional[str] = None,
    end: Optional[str] = None,
    period: Optional[str] = None,
    limit: Optional[int] = None,
    scope: ScopedStore = Depends(scoped_store),
):
    date_range = resolve_range(start, end, period=period)
    return scope.summary.summary(date_range.start, date_range.end, limit)


@router.post("/cashflow", response_model=TransactionOut, status_code=201)
def create_cashflow(payload: TransactionIn, scope: ScopedStore = Depends(scoped_store)):
    txn = scope.transactions.create(
        payload.type,
        payload.amount,
        payload.description,
        payload.category_id,
        payload.date,
    )
    return transaction_out(txn)


@router.get("/cashflow/{transaction_id}", response_model=TransactionOut)
def get_cashflow(transaction_id: int, scope: ScopedStore = Depends(scoped_store)):
    return transaction_out(scope.transactions.get(transaction_id))


@router.put("/cashflow/{transaction_id}", response_model=TransactionOut)
def update_cashflow(
    transaction_id: int,
    payload: TransactionUpdate,
    scope: ScopedStore = Depends(scoped_store),
):
    txn = scope.transactions.update(
        transaction_id, **payload.model_dump(exclude_unset=True)
    )
    return transaction_out(txn)


@router.delete("/cashflow/{transaction_id}")
def delete_cashflow(transaction_id: int, scope: ScopedStore = Depends(scoped_store)):
    scope.transactions.delete(transaction_id)
    return {"message": "Cashflow entry removed"}


app = create_app()
