"""Tests for the object storage uploader."""
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from media_extractor.storage import StorageUploader, is_conflict, object_key


def _client_error(code, status=400):
    return ClientError(
        {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        "PutObject",
    )


@pytest.fixture
def client():
    return MagicMock()


def _uploader(client, sleeps=None):
    return StorageUploader(
        client=client,
        bucket="media",
        public_base="https://cdn.test/",
        max_retries=2,
        sleep=(sleeps.append if sleeps is not None else lambda s: None),
    )


def test_upload_public_read_and_returns_url(client):
    url = _uploader(client).upload(b"data", "file-processing/image/wh-1/a.jpg", "image/jpeg")

    assert url == "https://cdn.test/file-processing/image/wh-1/a.jpg"
    kwargs = client.put_object.call_args.kwargs
    assert kwargs["Bucket"] == "media"
    assert kwargs["ACL"] == "public-read"
    assert kwargs["ContentType"] == "image/jpeg"


def test_upload_retries_conflicts_with_linear_backoff(client):
    """Test that concurrent-modification conflicts are retried."""
    sleeps = []
    client.put_object.side_effect = [_client_error("OperationAborted", 409), None]

    _uploader(client, sleeps).upload(b"data", "k", "image/jpeg")

    assert client.put_object.call_count == 2
    assert sleeps == [1]


def test_upload_gives_up_after_max_retries(client):
    sleeps = []
    client.put_object.side_effect = _client_error("ConditionalRequestConflict", 409)

    with pytest.raises(ClientError):
        _uploader(client, sleeps).upload(b"data", "k", "image/jpeg")

    assert client.put_object.call_count == 3
    assert sleeps == [1, 2]


def test_upload_other_errors_raise_immediately(client):
    client.put_object.side_effect = _client_error("AccessDenied", 403)

    with pytest.raises(ClientError):
        _uploader(client).upload(b"data", "k", "image/jpeg")
    assert client.put_object.call_count == 1


def test_is_conflict():
    assert is_conflict(_client_error("OperationAborted"))
    assert is_conflict(_client_error("Whatever", 409))
    assert not is_conflict(_client_error("NoSuchBucket", 404))


def test_object_key_sanitizes_segments():
    key = object_key("file-processing", "image", "wh 1", "Foto do RG (1).jpg")
    assert key == "file-processing/image/wh-1/Foto-do-RG-_1_.jpg"
    assert object_key("a/b", "../c", "") == "a/b/c"
