"""Tests for the password strength policy and argon2 hashing."""

import pytest

from talentconnect.service.errors import ValidationError
from talentconnect.service.passwords import (
    MAX_PASSWORD_LENGTH,
    hash_password,
    is_strong_password,
    password_problems,
    validate_password_strength,
    verify_password,
)


class TestStrengthPolicy:
    def test_accepts_password_meeting_every_rule(self):
        assert is_strong_password("Abcdef1!")

    @pytest.mark.parametrize(
        "password",
        ["abcdefgh", "ABCDEFG1", "Abcdefg1", "Ab1!", "abcdef1!", "ABCDEF1!", "Abcdefg!"],
    )
    def test_rejects_weak_passwords(self, password):
        assert not is_strong_password(password)

    def test_rejects_overlong_password(self):
        password = "Aa1!" + "x" * MAX_PASSWORD_LENGTH
        assert "must be at most 128 characters" in password_problems(password)

    def test_whitespace_does_not_count_as_symbol(self):
        assert "must contain a symbol" in password_problems("Abcdef1 ")

    def test_weak_password_raises_with_code_and_details(self):
        with pytest.raises(ValidationError) as excinfo:
            validate_password_strength("abcdefgh")

        err = excinfo.value
        assert err.status_code == 400
        assert err.error_code == "WEAK_PASSWORD"
        fields = {d["field"] for d in err.detail}
        assert fields == {"password"}


class TestHashing:
    def test_hash_is_not_plaintext_and_verifies(self):
        hashed = hash_password("Abcdef1!")
        assert hashed != "Abcdef1!"
        assert hashed.startswith("$argon2id$")
        assert verify_password(hashed, "Abcdef1!")

    def test_wrong_password_does_not_verify(self):
        hashed = hash_password("Abcdef1!")
        assert not verify_password(hashed, "Abcdef1?")

    def test_same_password_hashes_differ(self):
        assert hash_password("Abcdef1!") != hash_password("Abcdef1!")

    def test_garbage_hash_is_rejected_not_raised(self):
        assert verify_password("not-a-hash", "Abcdef1!") is False
