import re
import secrets
import string
from datetime import datetime, timezone
from typing import Optional

import structlog
from passlib.context import CryptContext
from sqlalchemy import insert, or_, select, update
from sqlalchemy.exc import IntegrityError

from database import Database, row_to_dict, users
from errors import ConflictError, InvalidCredentials, UserExists, UserNotFound, ValidationError
from schemas import AuthResponse, Contact, RegisterRequest, UserResponse

logger = structlog.get_logger(__name__)

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

EMAIL_RE = re.compile(r"^[A-Za-z0-9+_.-]+@(.+)$")
MIN_PASSWORD_LENGTH = 6
RESET_PASSWORD_LENGTH = 10


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return pwd_context.verify(password, hashed)


# Simple token mechanism, the same opaque session token the clients already store.

def create_token(user_id: int) -> str:
    now = datetime.now(timezone.utc).timestamp()
    return f"tok_{user_id}_{int(now)}"


def generate_password(length: int = RESET_PASSWORD_LENGTH) -> str:
    alphabet = string.ascii_letters + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(length))


def _user_response(row) -> UserResponse:
    d = row_to_dict(row)
    return UserResponse(id=d["id"], username=d["username"] or "", email=d["email"], name=d["name"])


class UserDirectory:
    def __init__(self, db: Database, notifier):
        self.db = db
        self.notifier = notifier

    def register(self, payload: RegisterRequest) -> UserResponse:
        username = (payload.username or payload.name).strip()
        if not payload.name.strip() or not payload.password or not username:
            raise ValidationError("Missing required fields")
        if not EMAIL_RE.match(payload.email):
            raise ValidationError("Invalid email format")
        if len(payload.password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        try:
            with self.db.transaction() as c:
                taken = c.execute(
                    select(users.c.email, users.c.username).where(
                        or_(users.c.email == payload.email, users.c.username == username)
                    )
                ).first()
                if taken is not None:
                    if taken.email == payload.email:
                        raise UserExists("Email already registered")
                    raise UserExists("Username already taken")
                result = c.execute(
                    insert(users).values(
                        username=username,
                        email=payload.email,
                        password_hash=hash_password(payload.password),
                        name=payload.name,
                    )
                )
        except IntegrityError as exc:
            # lost a race with a concurrent registration for the same email/username
            raise UserExists() from exc

        user_id = result.inserted_primary_key[0]
        logger.info("users.registered", user_id=user_id)
        return UserResponse(id=user_id, username=username, email=payload.email, name=payload.name)

    def login(self, email: str, password: str) -> AuthResponse:
        if not email or not password:
            raise ValidationError("Missing email or password")
        with self.db.transaction() as c:
            row = c.execute(select(users).where(users.c.email == email)).first()
        if row is None or not verify_password(password, row.password_hash):
            logger.warning("users.login_failed", email=email)
            raise InvalidCredentials()
        user = _user_response(row)
        return AuthResponse(**user.model_dump(), token=create_token(user.id))

    def find_email_and_name(self, user_id: int) -> Contact:
        with self.db.transaction() as c:
            row = c.execute(select(users.c.email, users.c.name).where(users.c.id == user_id)).first()
        if row is None:
            raise UserNotFound()
        return Contact(email=row.email, name=row.name)

    def reset_password(self, email: str, new_password: Optional[str] = None) -> None:
        """
        Replace the user's password with a freshly generated one and email it.

        Nothing is written until the email went out, so a delivery failure leaves the
        old password in place and raises EmailSendError. The write is guarded by the
        hash that was read, and a password changed in the meantime wins.
        """
        new_password = new_password or generate_password()
        with self.db.transaction() as c:
            row = c.execute(
                select(users.c.id, users.c.name, users.c.password_hash).where(users.c.email == email)
            ).first()
        if row is None:
            raise UserNotFound()

        new_hash = hash_password(new_password)
        self.notifier.send_password_reset(email, row.name, new_password)

        with self.db.transaction() as c:
            result = c.execute(
                update(users)
                .where(users.c.id == row.id, users.c.password_hash == row.password_hash)
                .values(password_hash=new_hash)
            )
        if result.rowcount == 0:
            logger.warning("users.password_reset_superseded", user_id=row.id)
            raise ConflictError("Password was changed meanwhile, please request a new reset")
        logger.info("users.password_reset", user_id=row.id)
