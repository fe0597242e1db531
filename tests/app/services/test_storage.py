from io import BytesIO
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from app.services.storage import LocalBackend, S3Backend, StorageBackend


def test_backends_must_implement_the_interface():
    class _Partial(StorageBackend):
        def url(self, key):
            return key

    with pytest.raises(TypeError):
        _Partial()


def test_local_backend_round_trip(storage):
    url = storage.put("media_1_ab.png", b"\x89PNG", "image/png")
    assert url == "http://testserver/media-files/media_1_ab.png"
    assert storage.key_for_url(url) == "media_1_ab.png"
    assert storage.get("media_1_ab.png") == b"\x89PNG"
    assert storage.key_for_url("https://elsewhere.example/media_1_ab.png") is None


def test_local_backend_missing_key(storage):
    with pytest.raises(FileNotFoundError):
        storage.get("missing.png")


def test_local_backend_rejects_escaping_keys(storage: LocalBackend):
    with pytest.raises(ValueError):
        storage.put("../outside.png", b"x")


@pytest.fixture
def s3_client():
    client = MagicMock()
    with patch("app.services.storage.boto3.client", return_value=client):
        yield client


def test_s3_backend_put_and_get(s3_client):
    backend = S3Backend(bucket="inbox-media", endpoint_url="http://minio:9000")
    s3_client.get_object.return_value = {"Body": BytesIO(b"data")}

    url = backend.put("media_1_ab.pdf", b"data", "application/pdf")

    assert url == "http://minio:9000/inbox-media/media_1_ab.pdf"
    s3_client.put_object.assert_called_once_with(
        Bucket="inbox-media",
        Key="media_1_ab.pdf",
        Body=b"data",
        ContentType="application/pdf",
    )
    assert backend.get("media_1_ab.pdf") == b"data"


def test_s3_backend_missing_key_is_file_not_found(s3_client):
    backend = S3Backend(bucket="inbox-media", public_base_url="https://cdn.example/")
    s3_client.get_object.side_effect = ClientError(
        {"Error": {"Code": "NoSuchKey", "Message": "gone"}}, "GetObject"
    )
    with pytest.raises(FileNotFoundError):
        backend.get("media_1_ab.pdf")
    assert backend.url("k") == "https://cdn.example/k"
