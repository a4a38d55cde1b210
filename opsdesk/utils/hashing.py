# opsdesk/utils/hashing.py
"""
One-way hashing for the two kinds of secret OpsDesk stores: staff passwords
and organization API keys. Both go through werkzeug's scrypt and are checked
with the same verifier; only the staff password is subject to a policy, since
API keys are generated server side.
"""
from __future__ import annotations

import re
from typing import Optional

from werkzeug.security import check_password_hash, generate_password_hash

HASH_METHOD = "scrypt"


# =========================
# Hash / verify
# =========================
def _hash_secret(plain: str, label: str) -> str:
    if not isinstance(plain, str) or not plain.strip():
        raise ValueError(f"{label} must be a non-empty string.")
    return generate_password_hash(plain, method=HASH_METHOD)


def hash_password(plain_password: str) -> str:
    return _hash_secret(plain_password, "Password")


def hash_api_key(plain_key: str) -> str:
    return _hash_secret(plain_key, "API key")


def verify_secret(stored_hash: Optional[str], plain: Optional[str]) -> bool:
    """True when plain matches stored_hash. Missing values never match."""
    if not stored_hash or not plain:
        return False
    return check_password_hash(stored_hash, plain)


# =========================
# Staff password policy
# =========================
_PASSWORD_RULES = [
    (lambda s: len(s) >= 10, "Password must be at least 10 characters."),
    (lambda s: re.search(r"[A-Z]", s) is not None, "Include at least one uppercase letter."),
    (lambda s: re.search(r"[a-z]", s) is not None, "Include at least one lowercase letter."),
    (lambda s: re.search(r"\d", s) is not None, "Include at least one number."),
]


def password_policy_error(plain_password) -> Optional[str]:
    """None when the password is acceptable, otherwise what to fix."""
    if not isinstance(plain_password, str):
        return "Password must be text."
    pw = plain_password.strip()
    if not pw:
        return "Password cannot be empty."

    for rule, msg in _PASSWORD_RULES:
        if not rule(pw):
            return msg
    return None
