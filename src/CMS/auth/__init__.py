from .deps import get_current_user, require_auth, require_roles
from .passwords import hash_password, verify_password
from .tokens import create_access_token, decode_access_token

__all__ = [
    "get_current_user",
    "require_auth",
    "require_roles",
    "hash_password",
    "verify_password",
    "create_access_token",
    "decode_access_token",
]
