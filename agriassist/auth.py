import binascii
import hashlib
import hmac
import json
import logging
import os
import re
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import jwt

from agriassist.errors import InputError

logger = logging.getLogger(__name__)

BASE_DIR = os.path.dirname(__file__)
DB_PATH = os.getenv("AGRIASSIST_DB_PATH", os.path.join(BASE_DIR, "data.db"))
JWT_SECRET = os.getenv("JWT_SECRET", "please_change_this_secret")
JWT_ALG = "HS256"
TOKEN_DAYS = 7
PBKDF2_ROUNDS = 100_000

USER_ROLES = ("farmer", "buyer", "service_provider")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _get_conn():
    conn = sqlite3.connect(DB_PATH, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def init_db():
    conn = _get_conn()
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            email TEXT UNIQUE NOT NULL,
            display_name TEXT NOT NULL,
            role TEXT NOT NULL,
            password_hash TEXT NOT NULL,
            salt TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
        """
    )
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS diagnosis_history (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            description TEXT,
            diagnosis_json TEXT NOT NULL,
            created_at TEXT NOT NULL,
            FOREIGN KEY(user_id) REFERENCES users(id)
        )
        """
    )
    conn.commit()
    conn.close()


def _hash_password(password: str, salt: Optional[bytes] = None) -> Dict[str, str]:
    if salt is None:
        salt = os.urandom(16)
    dk = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, PBKDF2_ROUNDS)
    return {"hash": binascii.hexlify(dk).decode("ascii"), "salt": binascii.hexlify(salt).decode("ascii")}


def _verify_password(password: str, salt_hex: str, hash_hex: str) -> bool:
    salt = binascii.unhexlify(salt_hex)
    expected = binascii.unhexlify(hash_hex)
    dk = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, PBKDF2_ROUNDS)
    return hmac.compare_digest(dk, expected)


def _public_user(row) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "email": row["email"],
        "displayName": row["display_name"],
        "role": row["role"],
        "createdAt": row["created_at"],
    }


def validate_registration(email: str, password: str, confirm_password: str,
                          display_name: Optional[str] = None, role: Optional[str] = None) -> Dict[str, str]:
    """Normalize and check sign-up fields; raises InputError with a form-ready message."""
    email = (email or "").strip().lower()
    if not EMAIL_RE.match(email):
        raise InputError("Please enter a valid email address.")
    if len(password or "") < 6:
        raise InputError("Password must be at least 6 characters long.")
    if password != confirm_password:
        raise InputError("Passwords do not match.")
    display_name = (display_name or "").strip()
    if display_name and len(display_name) < 2:
        raise InputError("Display name must be at least 2 characters.")
    role = (role or "farmer").strip().lower()
    if role not in USER_ROLES:
        raise InputError("Please select a role.")
    return {"email": email, "display_name": display_name or email.split("@")[0], "role": role}


def create_user(email: str, password: str, display_name: str, role: str = "farmer") -> Dict[str, Any]:
    init_db()
    parts = _hash_password(password)
    conn = _get_conn()
    cur = conn.cursor()
    try:
        cur.execute(
            "INSERT INTO users (email, display_name, role, password_hash, salt, created_at) VALUES (?, ?, ?, ?, ?, ?)",
            (email, display_name, role, parts["hash"], parts["salt"], _now()),
        )
        conn.commit()
        user_id = cur.lastrowid
    except sqlite3.IntegrityError:
        raise InputError("This email address is already in use.", status_code=409)
    finally:
        conn.close()
    logger.info("Registered user id=%s role=%s", user_id, role)
    return get_user_by_id(user_id)


def authenticate_user(email: str, password: str) -> Optional[Dict[str, Any]]:
    init_db()
    conn = _get_conn()
    cur = conn.cursor()
    cur.execute("SELECT * FROM users WHERE email = ?", ((email or "").strip().lower(),))
    row = cur.fetchone()
    conn.close()
    if not row:
        return None
    if not _verify_password(password or "", row["salt"], row["password_hash"]):
        return None
    return _public_user(row)


def get_user_by_id(user_id: int) -> Optional[Dict[str, Any]]:
    init_db()
    conn = _get_conn()
    cur = conn.cursor()
    cur.execute("SELECT id, email, display_name, role, created_at FROM users WHERE id = ?", (user_id,))
    row = cur.fetchone()
    conn.close()
    if not row:
        return None
    return _public_user(row)


def create_access_token(user: Dict[str, Any], expires_days: int = TOKEN_DAYS) -> str:
    payload = {
        "sub": str(user["id"]),
        "email": user["email"],
        "role": user["role"],
        "exp": datetime.now(timezone.utc) + timedelta(days=expires_days),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALG)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
    except jwt.PyJWTError:
        return None


def user_from_authorization(authorization: Optional[str]) -> Optional[Dict[str, Any]]:
    """Resolve an `Authorization: Bearer <token>` header to a user, or None."""
    if not authorization:
        return None
    token = authorization
    if authorization.lower().startswith("bearer "):
        token = authorization.split(" ", 1)[1]
    data = decode_access_token(token.strip())
    if not data or not data.get("sub"):
        return None
    try:
        return get_user_by_id(int(data["sub"]))
    except (TypeError, ValueError):
        return None


def save_diagnosis(user_id: int, diagnosis: Dict[str, Any], description: Optional[str] = None) -> Dict[str, Any]:
    init_db()
    conn = _get_conn()
    cur = conn.cursor()
    now = _now()
    cur.execute(
        "INSERT INTO diagnosis_history (user_id, description, diagnosis_json, created_at) VALUES (?, ?, ?, ?)",
        (user_id, description, json.dumps(diagnosis), now),
    )
    conn.commit()
    item_id = cur.lastrowid
    conn.close()
    return {"id": item_id, "user_id": user_id, "created_at": now}


def list_diagnosis(user_id: int, limit: int = 100) -> List[Dict[str, Any]]:
    init_db()
    conn = _get_conn()
    cur = conn.cursor()
    cur.execute(
        "SELECT id, description, diagnosis_json, created_at FROM diagnosis_history "
        "WHERE user_id = ? ORDER BY created_at DESC, id DESC LIMIT ?",
        (user_id, limit),
    )
    rows = cur.fetchall()
    conn.close()
    out = []
    for r in rows:
        out.append({
            "id": r["id"],
            "description": r["description"],
            "diagnosis": json.loads(r["diagnosis_json"]),
            "createdAt": r["created_at"],
        })
    return out
