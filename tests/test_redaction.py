from services.redaction import redact_dict, redact_text


def test_bearer_tokens_are_masked():
    assert redact_text("auth failed: Bearer abc.def-123") == "auth failed: Bearer [REDACTED]"


def test_hex_secrets_are_masked():
    secret = "ab" * 32
    assert redact_text(f"secret={secret} done") == "secret=[REDACTED] done"


def test_addresses_are_shortened():
    address = "0x" + "1234" + "0" * 32 + "abcd"
    assert redact_text(f"to {address}") == "to 0x1234...abcd"


def test_sensitive_keys_are_redacted_recursively():
    payload = {
        "entitySecretCiphertext": "xyz",
        "Authorization": "Bearer t",
        "nested": {"api_key": "k", "state": "COMPLETE"},
        "items": [{"signature": "s"}, "plain"],
    }
    assert redact_dict(payload) == {
        "entitySecretCiphertext": "[REDACTED]",
        "Authorization": "[REDACTED]",
        "nested": {"api_key": "[REDACTED]", "state": "COMPLETE"},
        "items": [{"signature": "[REDACTED]"}, "plain"],
    }
