"""Unit tests for webhook HMAC verification."""

import pytest

from reconciliation_service.exceptions import SignatureVerificationError
from reconciliation_service.services.webhook_security import (
    extract_signature,
    generate_signature,
    require_valid_signature,
    verify_signature,
)

BODY = b'{"id": 42, "sku": "DD1391-100"}'
SECRET = "s3cret"


class TestVerifySignature:
    def test_valid_base64(self) -> None:
        assert verify_signature(BODY, generate_signature(BODY, SECRET), SECRET) is True

    def test_valid_hex_with_prefix(self) -> None:
        signature = "sha256=" + generate_signature(BODY, SECRET, "hex")
        assert verify_signature(BODY, signature, SECRET, "hex") is True

    def test_hex_is_case_insensitive(self) -> None:
        signature = generate_signature(BODY, SECRET, "hex").upper()
        assert verify_signature(BODY, signature, SECRET, "hex") is True

    def test_tampered_body(self) -> None:
        signature = generate_signature(BODY, SECRET)
        assert verify_signature(BODY + b" ", signature, SECRET) is False

    def test_wrong_secret(self) -> None:
        assert verify_signature(BODY, generate_signature(BODY, "other"), SECRET) is False

    def test_missing_signature(self) -> None:
        assert verify_signature(BODY, None, SECRET) is False

    def test_unset_secret_rejects(self) -> None:
        assert verify_signature(BODY, generate_signature(BODY, ""), "") is False


def test_extract_signature() -> None:
    assert extract_signature("sha256=abc") == "abc"
    assert extract_signature("  abc ") == "abc"
    assert extract_signature("") is None
    assert extract_signature("sha256=") is None


def test_require_valid_signature_raises() -> None:
    with pytest.raises(SignatureVerificationError):
        require_valid_signature(BODY, "bogus", SECRET)
