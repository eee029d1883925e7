"""Tests for password generation"""

import base64

from pg_operator.passwords import generate_password


def test_password_length_and_alphabet():
    password = generate_password()
    assert len(base64.urlsafe_b64decode(password)) == 32, "Should encode 32 random bytes"
    assert "/" not in password and "+" not in password, "Should be URL-safe"


def test_passwords_are_unique():
    assert len({generate_password(16) for _ in range(50)}) == 50
