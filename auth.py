from typing import Optional

import bcrypt
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy.orm import Session

from config import Settings
from errors import AuthenticationError
from models import User

# bcrypt ignores everything past this many bytes.
MAX_PASSWORD_BYTES = 72


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def check_password(password: str, hashed: str) -> bool:
    raw = password.encode("utf-8")
    if len(raw) > MAX_PASSWORD_BYTES:
        return False
    return bcrypt.checkpw(raw, hashed.encode("utf-8"))


def _serializer(settings: Settings) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(settings.secret_key, salt="auth-token")


def _password_stamp(user: User) -> Optional[str]:
    if user.password_changed_at is None:
        return None
    return user.password_changed_at.isoformat()


def issue_token(user: User, settings: Settings) -> str:
    return _serializer(settings).dumps({"u": user.id, "pw": _password_stamp(user)})


def user_from_token(session: Session, token: str, settings: Settings) -> User:
    """Resolve a bearer token to its user.

    Tokens are rejected once they are older than the configured max age, and
    once the user has changed their password since the token was issued.
    """
    try:
        data = _serializer(settings).loads(token, max_age=settings.token_max_age_secs)
    except SignatureExpired as exc:
        raise AuthenticationError("Token expired") from exc
    except BadSignature as exc:
        raise AuthenticationError("Invalid token") from exc

    user_id = data.get("u") if isinstance(data, dict) else None
    user = session.get(User, user_id) if isinstance(user_id, int) else None
    if user is None or data.get("pw") != _password_stamp(user):
        raise AuthenticationError("Not authorized")
    return user
