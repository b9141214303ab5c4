import boto3
import pytest
from botocore.stub import Stubber
from moto import mock_aws

from app.services.storage.adapter import S3StorageAdapter, StorageError

BUCKET = "eduloan-documents"
ENDPOINT = "http://minio:9000"


@pytest.fixture
def aws_credentials(monkeypatch):
    """Mocked AWS credentials for moto."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture
def s3_adapter(aws_credentials):
    with mock_aws():
        yield S3StorageAdapter(BUCKET, region="us-east-1")


@pytest.fixture
def stubbed_client(aws_credentials):
    client = boto3.client("s3", endpoint_url=ENDPOINT, region_name="us-east-1")
    with Stubber(client) as stubber:
        yield client, stubber
        stubber.assert_no_pending_responses()


def test_public_url_is_endpoint_bucket_and_key():
    adapter = S3StorageAdapter(BUCKET, endpoint_url=f"{ENDPOINT}/", client=object())

    assert adapter.public_url("documents/2026/05/aadhar card.pdf") == (
        f"{ENDPOINT}/{BUCKET}/documents/2026/05/aadhar%20card.pdf"
    )


def test_public_base_url_overrides_endpoint():
    adapter = S3StorageAdapter(
        BUCKET, endpoint_url=ENDPOINT, public_base_url="https://files.example.in", client=object()
    )

    assert adapter.public_url("chat/a.png") == f"https://files.example.in/{BUCKET}/chat/a.png"


def test_put_object_creates_missing_bucket(s3_adapter):
    stored = s3_adapter.put_object("documents/pan.pdf", b"%PDF-1.4", "application/pdf", {"owner": "u1"})

    buckets = [bucket["Name"] for bucket in boto3.client("s3").list_buckets()["Buckets"]]
    assert buckets == [BUCKET]
    assert stored.url == f"https://{BUCKET}.s3.amazonaws.com/documents/pan.pdf"
    assert stored.size == 8
    assert stored.etag
    assert stored.metadata == {"owner": "u1"}
    head = s3_adapter.client.head_object(Bucket=BUCKET, Key="documents/pan.pdf")
    assert head["ContentType"] == "application/pdf"
    assert head["Metadata"] == {"owner": "u1"}


def test_existing_bucket_is_reused(s3_adapter):
    s3_adapter.client.create_bucket(Bucket=BUCKET)
    s3_adapter.client.put_object(Bucket=BUCKET, Key="documents/old.pdf", Body=b"%PDF")

    s3_adapter.ensure_bucket()

    assert s3_adapter.object_exists("documents/old.pdf")


def test_list_and_delete_objects(s3_adapter):
    s3_adapter.put_object("documents/a.pdf", b"%PDF-a", "application/pdf")
    s3_adapter.put_object("chat/b.png", b"\x89PNG", "image/png")

    assert s3_adapter.list_objects("documents/") == ["documents/a.pdf"]

    s3_adapter.delete_object("documents/a.pdf")

    assert s3_adapter.object_exists("documents/a.pdf") is False
    assert s3_adapter.ping() is True


def test_download_url_is_presigned(s3_adapter):
    s3_adapter.put_object("documents/a.pdf", b"%PDF", "application/pdf")

    url = s3_adapter.generate_download_url("documents/a.pdf", expires_in=600)

    assert "documents/a.pdf" in url
    assert "Expires=" in url
    assert "Signature=" in url


def test_bucket_creation_failure_raises_storage_error(stubbed_client):
    client, stubber = stubbed_client
    stubber.add_client_error("head_bucket", service_error_code="404", http_status_code=404)
    stubber.add_client_error("create_bucket", service_error_code="AccessDenied", http_status_code=403)
    adapter = S3StorageAdapter(BUCKET, endpoint_url=ENDPOINT, client=client)

    with pytest.raises(StorageError, match=f"Failed to ensure bucket {BUCKET}"):
        adapter.ensure_bucket()


def test_upload_errors_are_wrapped(stubbed_client):
    client, stubber = stubbed_client
    stubber.add_response("head_bucket", {}, {"Bucket": BUCKET})
    stubber.add_client_error("put_object", service_error_code="SlowDown", http_status_code=503)
    adapter = S3StorageAdapter(BUCKET, endpoint_url=ENDPOINT, client=client)

    with pytest.raises(StorageError) as exc_info:
        adapter.put_object("documents/a.pdf", b"%PDF", "application/pdf")

    assert str(exc_info.value).startswith("Failed to upload file: ")


def test_delete_errors_are_wrapped(stubbed_client):
    client, stubber = stubbed_client
    stubber.add_client_error("delete_object", service_error_code="AccessDenied", http_status_code=403)
    adapter = S3StorageAdapter(BUCKET, endpoint_url=ENDPOINT, client=client)

    with pytest.raises(StorageError, match="Failed to delete file"):
        adapter.delete_object("documents/a.pdf")


def test_ping_reports_unreachable_bucket(stubbed_client):
    client, stubber = stubbed_client
    stubber.add_client_error("head_bucket", service_error_code="403", http_status_code=403)
    adapter = S3StorageAdapter(BUCKET, endpoint_url=ENDPOINT, client=client)

    assert adapter.ping() is False
