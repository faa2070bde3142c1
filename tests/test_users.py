import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker

from auth import check_password, hash_password, issue_token, user_from_token
from config import Settings
from database import Base
from errors import AuthenticationError, DuplicateError, NotFoundError, ValidationError
from models import Category, Transaction, TransactionType, User
from store import Store


def make_session() -> Session:
    engine = create_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def make_settings(**overrides) -> Settings:
    values = {
        "database_url": "sqlite://",
        "secret_key": "test-secret",
        "token_max_age_days": 1,
        "summary_limit": 30,
        "page_size": 20,
        "log_level": "WARNING",
    }
    values.update(overrides)
    return Settings(**values)


def test_hash_password_roundtrip_and_byte_limit() -> None:
    hashed = hash_password("hunter22")

    assert hashed != "hunter22"
    assert check_password("hunter22", hashed)
    assert not check_password("hunter23", hashed)
    assert not check_password("x" * 73, hashed)


def test_register_normalizes_email_and_hashes_password() -> None:
    session = make_session()
    users = Store(session).users

    user = users.register(" Ann ", " Ann@Example.COM ", "secret1")

    assert user.id is not None
    assert user.name == "Ann"
    assert user.email == "ann@example.com"
    assert user.password_hash != "secret1"
    assert check_password("secret1", user.password_hash)


def test_register_rejects_duplicate_email() -> None:
    session = make_session()
    users = Store(session).users
    users.register("Ann", "ann@example.com", "secret1")

    with pytest.raises(DuplicateError):
        users.register("Other Ann", "ANN@example.com", "secret2")


@pytest.mark.parametrize(
    ("fields", "bad_field"),
    [
        ({"name": "", "email": "ann@example.com", "password": "secret1"}, "name"),
        ({"name": "Ann", "email": "not-an-email", "password": "secret1"}, "email"),
        ({"name": "Ann", "email": "ann@example.com", "password": "short"}, "password"),
        ({"name": "Ann", "email": "ann@example.com", "password": "é" * 40}, "password"),
    ],
)
def test_register_validation(fields, bad_field) -> None:
    session = make_session()

    with pytest.raises(ValidationError) as excinfo:
        Store(session).users.register(**fields)

    assert excinfo.value.field == bad_field


def test_authenticate() -> None:
    session = make_session()
    users = Store(session).users
    ann = users.register("Ann", "ann@example.com", "secret1")

    assert users.authenticate("ANN@example.com", "secret1").id == ann.id
    with pytest.raises(AuthenticationError):
        users.authenticate("ann@example.com", "wrong-password")
    with pytest.raises(AuthenticationError):
        users.authenticate("nobody@example.com", "secret1")


def test_update_profile_checks_email_uniqueness() -> None:
    session = make_session()
    users = Store(session).users
    ann = users.register("Ann", "ann@example.com", "secret1")
    users.register("Bob", "bob@example.com", "secret1")

    updated = users.update_profile(ann.id, name="Annie")
    assert updated.name == "Annie"
    assert updated.email == "ann@example.com"

    with pytest.raises(DuplicateError):
        users.update_profile(ann.id, email="bob@example.com")
    with pytest.raises(ValidationError):
        users.update_profile(ann.id, email=None)


def test_change_password_requires_current_password() -> None:
    session = make_session()
    users = Store(session).users
    ann = users.register("Ann", "ann@example.com", "secret1")

    with pytest.raises(AuthenticationError):
        users.change_password(ann.id, "wrong", "secret2")

    users.change_password(ann.id, "secret1", "secret2")

    assert users.authenticate("ann@example.com", "secret2").id == ann.id
    with pytest.raises(AuthenticationError):
        users.authenticate("ann@example.com", "secret1")


def test_delete_user_removes_owned_records() -> None:
    session = make_session()
    store = Store(session)
    ann = store.users.register("Ann", "ann@example.com", "secret1")
    bob = store.users.register("Bob", "bob@example.com", "secret1")
    for user in (ann, bob):
        scope = store.for_user(user.id)
        food = scope.categories.create("Food", TransactionType.expense)
        scope.transactions.create(TransactionType.expense, 5, "Lunch", food.id)

    store.users.delete(ann.id)

    with pytest.raises(NotFoundError):
        store.users.get(ann.id)
    assert session.scalar(select(func.count(Category.id))) == 1
    assert session.scalar(select(func.count(Transaction.id))) == 1
    assert store.for_user(bob.id).transactions.list().total == 1


def test_token_resolves_to_its_user() -> None:
    session = make_session()
    settings = make_settings()
    ann = Store(session).users.register("Ann", "ann@example.com", "secret1")

    token = issue_token(ann, settings)

    assert user_from_token(session, token, settings).id == ann.id


def test_token_is_rejected_when_tampered_or_signed_elsewhere() -> None:
    session = make_session()
    settings = make_settings()
    ann = Store(session).users.register("Ann", "ann@example.com", "secret1")
    token = issue_token(ann, settings)

    with pytest.raises(AuthenticationError):
        user_from_token(session, token[:-2] + "xx", settings)
    with pytest.raises(AuthenticationError):
        user_from_token(session, token, make_settings(secret_key="other-secret"))
    with pytest.raises(AuthenticationError):
        user_from_token(session, "garbage", settings)


def test_token_expires_after_max_age() -> None:
    session = make_session()
    ann = Store(session).users.register("Ann", "ann@example.com", "secret1")
    token = issue_token(ann, make_settings())

    with pytest.raises(AuthenticationError):
        user_from_token(session, token, make_settings(token_max_age_days=-1))


def test_password_change_invalidates_old_tokens() -> None:
    session = make_session()
    settings = make_settings()
    users = Store(session).users
    ann = users.register("Ann", "ann@example.com", "secret1")
    old_token = issue_token(ann, settings)

    ann = users.change_password(ann.id, "secret1", "secret2")

    with pytest.raises(AuthenticationError):
        user_from_token(session, old_token, settings)
    assert user_from_token(session, issue_token(ann, settings), settings).id == ann.id


def test_token_of_deleted_user_is_rejected() -> None:
    session = make_session()
    settings = make_settings()
    users = Store(session).users
    ann = users.register("Ann", "ann@example.com", "secret1")
    token = issue_token(ann, settings)

    users.delete(ann.id)

    with pytest.raises(AuthenticationError):
        user_from_token(session, token, settings)
