import time
from datetime import datetime, timezone
from urllib.parse import parse_qs, urlparse

import pytest

from app.services.storage.adapter import LocalFileSystemAdapter, verify_local_url_signature
from app.services.storage.key_generator import KeyGenerator
from app.services.uploads import (
    CHAT_RULE,
    DOCUMENT_RULE,
    KYC_RULE,
    MB,
    UploadValidationError,
    rule_for_document_type,
    validate_upload_bytes,
)

PDF = b"%PDF-1.7\n%binary"
PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 8


def test_accepts_matching_pdf():
    upload = validate_upload_bytes(PDF, "../../marks.pdf", "application/pdf", DOCUMENT_RULE)
    assert upload.original_name == "marks.pdf"
    assert upload.extension == ".pdf"
    assert upload.size == len(PDF)


def test_rejects_empty_file():
    with pytest.raises(UploadValidationError, match="Empty file"):
        validate_upload_bytes(b"", "a.pdf", "application/pdf", DOCUMENT_RULE)


def test_rejects_oversized_document():
    with pytest.raises(UploadValidationError) as exc_info:
        validate_upload_bytes(b"%PDF" + b"0" * (10 * MB), "a.pdf", "application/pdf", DOCUMENT_RULE)
    assert exc_info.value.details["max_size_mb"] == 10


def test_chat_rule_allows_larger_media():
    data = b"\x00" * (20 * MB)
    upload = validate_upload_bytes(data, "clip.mp4", "video/mp4", CHAT_RULE)
    assert upload.size == 20 * MB


def test_rejects_disallowed_mime():
    with pytest.raises(UploadValidationError) as exc_info:
        validate_upload_bytes(b"hello", "a.txt", "text/plain", DOCUMENT_RULE)
    assert "application/pdf" in exc_info.value.details["allowed_types"]


def test_rejects_content_that_does_not_match_extension():
    with pytest.raises(UploadValidationError, match="does not match"):
        validate_upload_bytes(PNG, "scan.pdf", "application/pdf", DOCUMENT_RULE)


def test_rejects_script_capable_extension():
    with pytest.raises(UploadValidationError, match="executable content"):
        validate_upload_bytes(b"<svg/>", "logo.svg", "image/png", CHAT_RULE)


def test_kyc_rule_is_pdf_only():
    with pytest.raises(UploadValidationError):
        validate_upload_bytes(PNG, "pan.png", "image/png", KYC_RULE)


def test_rule_for_document_type():
    assert rule_for_document_type("chat_files") is CHAT_RULE
    assert rule_for_document_type("marksheet") is DOCUMENT_RULE
    assert rule_for_document_type(None) is DOCUMENT_RULE


def test_upload_error_maps_to_http_400():
    exc = UploadValidationError("Empty file", {"field": "pan"}).to_http()
    assert exc.status_code == 400
    assert exc.detail["code"] == "invalid_file"


def test_object_keys_by_kind():
    now = datetime(2026, 1, 2, tzinfo=timezone.utc)
    assert KeyGenerator.generate_object_key("document", "My File.PDF", now=now).startswith("documents/2026-01-02/")
    assert KeyGenerator.generate_object_key("document", "My File.PDF", now=now).endswith(".pdf")
    assert KeyGenerator.generate_object_key("chat", "a.png", {"chat_id": "c1"}, now=now).startswith("chat/c1/")
    assert KeyGenerator.generate_object_key("kyc", None, {"user_id": "u1"}, now=now).endswith(".bin")
    with pytest.raises(ValueError):
        KeyGenerator.generate_object_key("chat", "a.png")
    with pytest.raises(ValueError):
        KeyGenerator.generate_object_key("avatar", "a.png")


def test_local_adapter_round_trip(tmp_path):
    adapter = LocalFileSystemAdapter(str(tmp_path), "http://api.test", signing_key="k")
    stored = adapter.put_object("documents/x/a.pdf", PDF, "application/pdf")
    assert stored.size == len(PDF)
    assert adapter.object_exists("documents/x/a.pdf")
    assert adapter.list_objects("documents/") == ["documents/x/a.pdf"]
    adapter.delete_object("documents/x/a.pdf")
    assert not adapter.object_exists("documents/x/a.pdf")


@pytest.mark.parametrize("key", ["../escape.pdf", "/etc/passwd", "a\\b.pdf"])
def test_local_adapter_rejects_unsafe_keys(tmp_path, key):
    adapter = LocalFileSystemAdapter(str(tmp_path), "http://api.test")
    with pytest.raises(ValueError):
        adapter.put_object(key, PDF, "application/pdf")


def test_local_download_url_is_signed(tmp_path):
    adapter = LocalFileSystemAdapter(str(tmp_path), "http://api.test", signing_key="secret")
    url = adapter.generate_download_url("documents/a.pdf", expires_in=60)
    query = {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}
    assert verify_local_url_signature("secret", query["key"], int(query["expires"]), query["signature"])
    assert not verify_local_url_signature("other", query["key"], int(query["expires"]), query["signature"])
    assert not verify_local_url_signature("secret", query["key"], int(time.time()) - 1, query["signature"])
