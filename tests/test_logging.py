from talentconnect.logging import (
    _redact_sensitive,
    get_correlation_id,
    sanitize_error_message,
    set_correlation_id,
)


class TestRedaction:
    def test_credentials_are_removed(self):
        event = _redact_sensitive(
            None,
            "info",
            {"event": "x", "password": "Abcdef1!", "refresh_token": "abc.def.ghi", "token_type": "access"},
        )
        assert event["password"] == "[redacted]"
        assert event["refresh_token"] == "[redacted]"
        assert event["token_type"] == "access"

    def test_contact_details_are_masked(self):
        event = _redact_sensitive(
            None, "info", {"email": "alice@example.com", "ip_address": "192.168.0.10"}
        )
        assert event["email"] == "a***@example.com"
        assert event["ip_address"] == "19***10"


class TestSanitize:
    def test_connection_strings_and_sql_are_stripped(self):
        message = sanitize_error_message(
            "could not connect to postgresql://app:pw@db:5432/tc while running SELECT * FROM app_account"
        )
        assert "pw@db" not in message
        assert "app_account" not in message

    def test_plain_message_is_kept(self):
        assert sanitize_error_message("kaboom") == "kaboom"

    def test_empty_message(self):
        assert sanitize_error_message("") == "An error occurred"


def test_correlation_id_prefers_client_value():
    assert set_correlation_id("abc-123") == "abc-123"
    assert get_correlation_id() == "abc-123"
    generated = set_correlation_id(None)
    assert generated and generated != "abc-123"
