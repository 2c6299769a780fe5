from urllib.parse import unquote

import pytest

from files_ingest.adapters.storage import LocalBlobStore, S3BlobStore, StorageFactory
from files_ingest.errors import TransientStorageError
from files_ingest.schemas import ContentDisposition
from tests.consts import TEST_BUCKET_NAME


@pytest.fixture
def s3_store(mocked_aws):
    return S3BlobStore(TEST_BUCKET_NAME, mocked_aws.s3, presigned_url_expiry=60)


def test_s3_put_get_delete(s3_store, mocked_aws):
    s3_store.put_object("thumbnails/k1", b"thumb", "image/jpeg", {"original-file-id": "f1"})

    assert s3_store.get_object("thumbnails/k1") == b"thumb"
    head = mocked_aws.s3.head_object(Bucket=TEST_BUCKET_NAME, Key="thumbnails/k1")
    assert head["ContentType"] == "image/jpeg"
    assert head["Metadata"] == {"original-file-id": "f1"}

    s3_store.delete_object("thumbnails/k1")
    with pytest.raises(TransientStorageError):
        s3_store.get_object("thumbnails/k1")


def test_s3_missing_object(s3_store):
    with pytest.raises(TransientStorageError):
        s3_store.get_object("nope")


def test_s3_upload_handle(s3_store):
    url = s3_store.issue_upload_handle("1700000000000-abc", "image/png", 1234)

    assert TEST_BUCKET_NAME in url
    assert "1700000000000-abc" in url
    assert "Expires=" in url or "X-Amz-Expires=" in url


def test_s3_download_handle_sets_disposition(s3_store):
    url = s3_store.issue_download_handle("k1", "report final.pdf", ContentDisposition.ATTACHMENT)

    assert 'attachment; filename="report%20final.pdf"' in unquote(url)


def test_local_store_round_trip(tmp_path):
    store = LocalBlobStore(str(tmp_path / "blobs"))

    upload_url = store.issue_upload_handle("k1", "text/plain", 5)
    assert upload_url.startswith("file://")

    store.put_object("k1", b"hello", "text/plain")
    assert store.get_object("k1") == b"hello"

    store.delete_object("k1")
    with pytest.raises(TransientStorageError):
        store.get_object("k1")


def test_local_store_rejects_traversal(tmp_path):
    store = LocalBlobStore(str(tmp_path / "blobs"))

    with pytest.raises(ValueError):
        store.get_object("../outside")


def test_factory_uses_local_store_in_local_dev(settings):
    assert isinstance(StorageFactory.get_blob_store(settings), LocalBlobStore)
