"""Password generation for database roles and their Secrets."""

import base64
import secrets

DEFAULT_PASSWORD_BYTES = 32


def generate_password(nbytes: int = DEFAULT_PASSWORD_BYTES) -> str:
    """Return URL-safe base64 text of nbytes cryptographically random bytes"""
    return base64.urlsafe_b64encode(secrets.token_bytes(nbytes)).decode()
