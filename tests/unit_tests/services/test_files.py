from datetime import timedelta

import pytest

from files_ingest.database.local import get_file, get_share_by_token, insert_share, utc_now
from files_ingest.errors import InvalidState, NotFound
from files_ingest.schemas import FileStatus
from files_ingest.services.files import FileService, thumbnail_key


@pytest.fixture
def files(blob_store, audit, db_path):
    return FileService(blob_store, audit, db_path=db_path)


def test_get_file_reports_preview(files, make_scanning_file, pipeline, user):
    file = make_scanning_file(user, b"plain words")
    assert files.get_file(file.id, user).can_preview is False

    pipeline.process(file.id)

    response = files.get_file(file.id, user)
    assert response.status == FileStatus.CLEAN
    assert response.can_preview is True


def test_get_file_hidden_from_other_users(files, make_scanning_file, user, other_user, admin):
    file = make_scanning_file(user, b"private")

    with pytest.raises(NotFound):
        files.get_file(file.id, other_user)
    assert files.get_file(file.id, admin).id == file.id


def test_list_files_pages(files, make_scanning_file, user, other_user):
    for i in range(3):
        make_scanning_file(user, f"content {i}".encode())
    make_scanning_file(other_user, b"theirs")

    page = files.list_files(user, page=2, page_size=2)
    assert page.total == 3
    assert len(page.files) == 1
    assert files.list_files(None).total == 4


def test_download_requires_clean(files, make_scanning_file, user):
    file = make_scanning_file(user, b"not yet")

    with pytest.raises(InvalidState):
        files.get_download_url(file.id, user)


def test_download_disposition(files, make_scanning_file, make_pipeline, user):
    text = make_scanning_file(user, b"readable", name="notes.txt")
    make_pipeline(sniffed_mime="text/plain").process(text.id)
    archive = make_scanning_file(user, b"PK\x03\x04zipped", name="bundle.zip")
    make_pipeline(sniffed_mime="application/zip").process(archive.id)

    assert files.get_download_url(text.id, user).url.endswith("disposition=inline")
    download = files.get_download_url(archive.id, user)
    assert download.url.endswith("disposition=attachment")
    assert download.filename == "bundle.zip"


def test_delete_file_removes_blobs_and_shares(files, make_scanning_file, blob_store, user, db_path):
    file = make_scanning_file(user, b"to delete")
    blob_store.objects[thumbnail_key(file.storage_key)] = b"thumb"
    insert_share("s1", file.id, user.id, "tok", utc_now() + timedelta(minutes=5), False, db_path=db_path)

    files.delete_file(file.id, user)

    assert get_file(file.id, db_path=db_path) is None
    assert get_share_by_token("tok", db_path=db_path) is None
    assert file.storage_key not in blob_store.objects
    assert thumbnail_key(file.storage_key) not in blob_store.objects


def test_delete_by_stranger_is_not_found(files, make_scanning_file, user, other_user, db_path):
    file = make_scanning_file(user, b"mine")

    with pytest.raises(NotFound):
        files.delete_file(file.id, other_user)
    assert get_file(file.id, db_path=db_path) is not None


def test_allow_file_releases_quarantine(files, make_scanning_file, make_pipeline, user, admin):
    file = make_scanning_file(user, b"<svg></svg>", name="logo.svg")
    make_pipeline(sniffed_mime="image/svg+xml").process(file.id)

    allowed = files.allow_file(file.id, admin)

    assert allowed.status == FileStatus.CLEAN
    assert allowed.reason is None


def test_allow_file_rejects_other_states(files, make_scanning_file, pipeline, user, admin):
    file = make_scanning_file(user, b"fine")
    pipeline.process(file.id)

    with pytest.raises(InvalidState):
        files.allow_file(file.id, admin)


def test_list_users_with_usage(files, make_scanning_file, user, other_user):
    make_scanning_file(user, b"12345")

    response = files.list_users()
    usage = {entry.user.id: entry for entry in response.users}
    assert response.total == 2
    assert usage[user.id].used_storage_bytes == 5
    assert usage[user.id].file_count == 1
    assert usage[other_user.id].file_count == 0
