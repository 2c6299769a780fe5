import hashlib
from io import BytesIO

import pytest
from PIL import Image

from files_ingest.database.local import get_file, insert_file, list_audit_logs
from files_ingest.errors import FileNotReady, ProcessingFailed, ScannerUnavailable, TransientStorageError, is_retryable
from files_ingest.schemas import FileStatus, ScanResult
from files_ingest.services.files import thumbnail_key
from tests.consts import EICAR_SIGNATURE, TEST_TEXT_CONTENT


def _png_bytes(size=(800, 600), color=(200, 30, 30)):
    buffer = BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def test_clean_file(pipeline, make_scanning_file, scanner, user, db_path):
    file = make_scanning_file(user, TEST_TEXT_CONTENT)

    outcome = pipeline.process(file.id)

    assert outcome.status == FileStatus.CLEAN
    stored = get_file(file.id, db_path=db_path)
    assert stored.status == FileStatus.CLEAN
    assert stored.sha256 == hashlib.sha256(TEST_TEXT_CONTENT).hexdigest()
    assert stored.detected_mime == "text/plain"
    assert stored.reason is None
    assert stored.scanned_at is not None
    assert scanner.calls == 1
    _, total = list_audit_logs(action="FILE_PROCESSED", db_path=db_path)
    assert total == 1


def test_reprocessing_terminal_file_is_noop(pipeline, make_scanning_file, scanner, blob_store, user, db_path):
    file = make_scanning_file(user, TEST_TEXT_CONTENT)
    pipeline.process(file.id)
    first = get_file(file.id, db_path=db_path)

    assert pipeline.process(file.id) is None

    assert get_file(file.id, db_path=db_path) == first
    assert scanner.calls == 1
    assert blob_store.get_calls == 1


def test_pending_file_is_not_ready(pipeline, scanner, blob_store, user, db_path):
    insert_file("f-pending", user.id, "a.txt", "key-pending", 3, db_path=db_path)

    with pytest.raises(FileNotReady) as exc_info:
        pipeline.process("f-pending")

    assert is_retryable(exc_info.value)
    assert get_file("f-pending", db_path=db_path).status == FileStatus.PENDING
    assert scanner.calls == 0
    assert blob_store.get_calls == 0


def test_missing_file_fails_permanently(pipeline):
    with pytest.raises(ProcessingFailed) as exc_info:
        pipeline.process("does-not-exist")

    assert not is_retryable(exc_info.value)


def test_infected_file_is_quarantined(pipeline, make_scanning_file, scanner, user, db_path):
    scanner.result = ScanResult(infected=True, signatures=[EICAR_SIGNATURE])
    file = make_scanning_file(user, b"X5O!P%@AP[4\\PZX54(P^)7CC)7}$EICAR-STANDARD-ANTIVIRUS-TEST-FILE!$H+H*")

    pipeline.process(file.id)

    stored = get_file(file.id, db_path=db_path)
    assert stored.status == FileStatus.QUARANTINED
    assert stored.reason == f"Virus detected: {EICAR_SIGNATURE}"
    _, total = list_audit_logs(action="FILE_QUARANTINED", db_path=db_path)
    assert total == 1


def test_dangerous_type_is_quarantined(make_pipeline, make_scanning_file, scanner, user, db_path):
    file = make_scanning_file(user, b"MZ\x90\x00" + b"\x00" * 60, name="setup.exe")

    make_pipeline(sniffed_mime="application/x-msdownload").process(file.id)

    stored = get_file(file.id, db_path=db_path)
    assert scanner.calls == 1
    assert stored.status == FileStatus.QUARANTINED
    assert "dangerous file type" in stored.reason
    assert stored.detected_mime == "application/x-msdownload"


def test_svg_is_quarantined_without_thumbnail(make_pipeline, make_scanning_file, blob_store, user, db_path):
    file = make_scanning_file(user, b"<svg xmlns='http://www.w3.org/2000/svg'></svg>", name="logo.svg")

    make_pipeline(sniffed_mime="image/svg+xml").process(file.id)

    assert get_file(file.id, db_path=db_path).status == FileStatus.QUARANTINED
    assert thumbnail_key(file.storage_key) not in blob_store.objects


def test_clean_image_gets_thumbnail(make_pipeline, make_scanning_file, blob_store, user, db_path):
    file = make_scanning_file(user, _png_bytes(), name="photo.png")

    make_pipeline().process(file.id)

    stored = get_file(file.id, db_path=db_path)
    assert stored.status == FileStatus.CLEAN
    assert stored.detected_mime == "image/png"
    thumbnail = blob_store.objects[thumbnail_key(file.storage_key)]
    assert blob_store.content_types[thumbnail_key(file.storage_key)] == "image/jpeg"
    with Image.open(BytesIO(thumbnail)) as image:
        assert image.format == "JPEG"
        assert image.size[0] <= 300 and image.size[1] <= 300


def test_thumbnail_failure_keeps_file_clean(make_pipeline, make_scanning_file, blob_store, user, db_path):
    file = make_scanning_file(user, b"not really a png", name="broken.png")

    make_pipeline(sniffed_mime="image/png").process(file.id)

    assert get_file(file.id, db_path=db_path).status == FileStatus.CLEAN
    assert thumbnail_key(file.storage_key) not in blob_store.objects


def test_duplicate_skips_scanner(make_pipeline, make_scanning_file, scanner, user, other_user, db_path):
    pipeline = make_pipeline(sniffed_mime="text/plain", enable_file_deduplication=True)
    first = make_scanning_file(user, TEST_TEXT_CONTENT)
    pipeline.process(first.id)
    second = make_scanning_file(other_user, TEST_TEXT_CONTENT, name="copy.txt")

    outcome = pipeline.process(second.id)

    assert scanner.calls == 1
    assert outcome.deduplicated_from == first.id
    stored = get_file(second.id, db_path=db_path)
    assert stored.status == FileStatus.CLEAN
    assert stored.sha256 == get_file(first.id, db_path=db_path).sha256
    assert stored.detected_mime == "text/plain"
    _, total = list_audit_logs(action="FILE_DEDUPLICATED", db_path=db_path)
    assert total == 1


def test_duplicate_of_quarantined_file_is_scanned(make_pipeline, make_scanning_file, scanner, user, db_path):
    pipeline = make_pipeline(sniffed_mime="text/html", enable_file_deduplication=True)
    first = make_scanning_file(user, b"<html></html>", name="a.html")
    pipeline.process(first.id)
    second = make_scanning_file(user, b"<html></html>", name="b.html")

    pipeline.process(second.id)

    assert scanner.calls == 2
    assert get_file(second.id, db_path=db_path).status == FileStatus.QUARANTINED


def test_dedup_disabled_scans_every_copy(pipeline, make_scanning_file, scanner, user):
    pipeline.process(make_scanning_file(user, TEST_TEXT_CONTENT).id)
    pipeline.process(make_scanning_file(user, TEST_TEXT_CONTENT).id)

    assert scanner.calls == 2


def test_scanner_outage_propagates(pipeline, make_scanning_file, scanner, user, db_path):
    scanner.error = ScannerUnavailable("connection refused")
    file = make_scanning_file(user, TEST_TEXT_CONTENT)

    with pytest.raises(ScannerUnavailable) as exc_info:
        pipeline.process(file.id)

    assert is_retryable(exc_info.value)
    assert get_file(file.id, db_path=db_path).status == FileStatus.SCANNING


def test_download_failure_propagates(pipeline, make_scanning_file, blob_store, user):
    blob_store.get_error = TransientStorageError("timed out")
    file = make_scanning_file(user, TEST_TEXT_CONTENT)

    with pytest.raises(TransientStorageError):
        pipeline.process(file.id)


def test_mark_rejected(pipeline, make_scanning_file, user, db_path):
    file = make_scanning_file(user, TEST_TEXT_CONTENT)

    assert pipeline.mark_rejected(file.id, "timed out") is True

    stored = get_file(file.id, db_path=db_path)
    assert stored.status == FileStatus.REJECTED
    assert stored.reason == "Processing error: timed out"
    assert pipeline.mark_rejected(file.id, "again") is False
