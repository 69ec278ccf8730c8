import hashlib
import logging
import os
import secrets
from dataclasses import dataclass

from .db import db

PBKDF2_ALG = "sha256"
PBKDF2_ITERS = 120_000
ROLES = {"user", "admin"}
ADMIN_EMAIL_ENV_VAR = "STALLVIEW_ADMIN_EMAIL"
ADMIN_PASSWORD_ENV_VAR = "STALLVIEW_ADMIN_PASSWORD"

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class User:
    id: int
    email: str
    password_hash: str
    role: str


@dataclass(frozen=True)
class Identity:
    """Signed-in visitor as seen by the viewer: no password material."""

    id: int
    email: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def identity_for(user: User | None) -> Identity | None:
    if user is None:
        return None
    return Identity(user.id, user.email, user.role)


def _hash_password_raw(password: str, salt: bytes) -> str:
    dk = hashlib.pbkdf2_hmac(PBKDF2_ALG, password.encode("utf-8"), salt, PBKDF2_ITERS)
    return dk.hex()


def hash_password(password: str) -> str:
    salt = os.urandom(16)
    digest = _hash_password_raw(password, salt)
    return f"pbkdf2_{PBKDF2_ALG}${PBKDF2_ITERS}${salt.hex()}${digest}"


def verify_password(password: str, stored: str) -> bool:
    try:
        scheme, iters, salt_hex, digest = stored.split("$", 3)
    except ValueError:
        return False
    if not scheme.startswith("pbkdf2_"):
        return False
    try:
        iters_i = int(iters)
        salt = bytes.fromhex(salt_hex)
    except ValueError:
        return False
    calc = hashlib.pbkdf2_hmac(PBKDF2_ALG, password.encode("utf-8"), salt, iters_i).hex()
    return secrets.compare_digest(calc, digest)


def _row_to_user(row) -> User:
    return User(int(row["id"]), row["email"], row["password_hash"], row["role"])


def ensure_admin_user() -> None:
    email = os.environ.get(ADMIN_EMAIL_ENV_VAR, "admin@localhost")
    with db() as conn:
        row = conn.execute("SELECT id FROM users WHERE role='admin' LIMIT 1").fetchone()
        if row:
            return
        password = os.environ.get(ADMIN_PASSWORD_ENV_VAR)
        if not password:
            password = "admin"
            logger.warning(
                "No %s set; created admin account %s with the default password",
                ADMIN_PASSWORD_ENV_VAR,
                email,
            )
        conn.execute(
            "INSERT INTO users(email, password_hash, role) VALUES (?, ?, 'admin')",
            (email, hash_password(password)),
        )


def get_user_by_email(email: str) -> User | None:
    with db() as conn:
        row = conn.execute(
            "SELECT id, email, password_hash, role FROM users WHERE email=?",
            (email.strip(),),
        ).fetchone()
        return _row_to_user(row) if row else None


def get_user_by_id(user_id: int) -> User | None:
    with db() as conn:
        row = conn.execute(
            "SELECT id, email, password_hash, role FROM users WHERE id=?",
            (user_id,),
        ).fetchone()
        return _row_to_user(row) if row else None


def create_user(email: str, password: str, role: str = "user") -> User:
    if role not in ROLES:
        raise ValueError(f"Unknown role: {role}")
    with db() as conn:
        cur = conn.execute(
            "INSERT INTO users(email, password_hash, role) VALUES (?, ?, ?)",
            (email.strip(), hash_password(password), role),
        )
        user_id = int(cur.lastrowid)
    return get_user_by_id(user_id)


def authenticate(email: str, password: str) -> User | None:
    user = get_user_by_email(email)
    if not user or not verify_password(password, user.password_hash):
        return None
    return user


def create_session(user_id: int) -> str:
    token = secrets.token_urlsafe(32)
    with db() as conn:
        conn.execute(
            """
            INSERT INTO sessions(user_id, token, created_at, last_seen)
            VALUES (?, ?, datetime('now'), datetime('now'))
            """,
            (user_id, token),
        )
    return token


def get_user_by_session(token: str) -> User | None:
    if not token:
        return None
    with db() as conn:
        row = conn.execute(
            """
            SELECT u.id, u.email, u.password_hash, u.role
            FROM sessions s
            JOIN users u ON u.id = s.user_id
            WHERE s.token=?
            """,
            (token,),
        ).fetchone()
        if not row:
            return None
        conn.execute(
            "UPDATE sessions SET last_seen=datetime('now') WHERE token=?",
            (token,),
        )
        return _row_to_user(row)


def delete_session(token: str) -> None:
    if not token:
        return
    with db() as conn:
        conn.execute("DELETE FROM sessions WHERE token=?", (token,))
