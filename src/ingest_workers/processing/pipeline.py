"""
File processing pipeline.

``ProcessingPipeline.process`` takes one file from ``scanning`` to a terminal
status: download, hash, dedup, sniff, scan, classify, thumbnail, commit. It may
run more than once for the same file, so a file already in a terminal status
is left untouched. A ``pending`` file raises the retryable ``FileNotReady``.
"""

import hashlib
import logging
from typing import Callable, Optional

from files_ingest.adapters.scanner import BaseScanner
from files_ingest.adapters.storage import BaseBlobStore
from files_ingest.database import local as db
from files_ingest.errors import FileNotReady, ProcessingFailed
from files_ingest.mime_policy import is_dangerous, is_raster_image
from files_ingest.schemas import FileRecord, FileStatus, ProcessingOutcome
from files_ingest.services.audit import AuditAction, AuditRecorder
from files_ingest.services.files import thumbnail_key
from files_ingest.settings import Settings, get_settings
from ingest_workers.processing.sniffing import sniff_mime
from ingest_workers.processing.thumbnails import THUMBNAIL_MIME, make_thumbnail

logger = logging.getLogger(__name__)

PROCESSING_ERROR_PREFIX = "Processing error: "


class ProcessingPipeline:
    def __init__(
        self,
        blob_store: BaseBlobStore,
        scanner: BaseScanner,
        audit: AuditRecorder,
        db_path: str = db.DEFAULT_DB_PATH,
        settings: Optional[Settings] = None,
        sniffer: Callable[[bytes, Optional[str]], str] = sniff_mime,
    ):
        self.settings = settings or get_settings()
        self.blob_store = blob_store
        self.scanner = scanner
        self.audit = audit
        self.db_path = db_path
        self.sniffer = sniffer

    def process(self, file_id: str) -> Optional[ProcessingOutcome]:
        """Classify one file. Returns None when there was nothing to do."""
        logger.info(f"Starting to process file: {file_id}")

        file = db.get_file(file_id, db_path=self.db_path)
        if file is None:
            raise ProcessingFailed(f"File not found: {file_id}")
        if file.is_terminal:
            logger.info(f"File {file_id} already {file.status.value}, skipping")
            return None
        if file.status != FileStatus.SCANNING:
            # complete() enqueues before its transaction commits; a redelivery sees the commit
            logger.warning(f"File {file_id} is {file.status.value}, not scanning yet; will retry")
            raise FileNotReady(f"File {file_id} is {file.status.value}, not scanning")

        data = self.blob_store.get_object(file.storage_key)
        sha256 = hashlib.sha256(data).hexdigest()

        if self.settings.enable_file_deduplication:
            duplicate = db.find_clean_duplicate(sha256, file.id, db_path=self.db_path)
            if duplicate is not None:
                logger.info(f"File {file_id} is a duplicate of clean file {duplicate.id}")
                outcome = ProcessingOutcome(
                    sha256=sha256,
                    detected_mime=duplicate.detected_mime,
                    status=FileStatus.CLEAN,
                    deduplicated_from=duplicate.id,
                )
                self._commit(file, outcome)
                return outcome

        outcome = self.classify(file, data, sha256)
        if outcome.status == FileStatus.CLEAN and is_raster_image(outcome.detected_mime):
            self._store_thumbnail(file, data)

        self._commit(file, outcome)
        return outcome

    def classify(self, file: FileRecord, data: bytes, sha256: str) -> ProcessingOutcome:
        detected_mime = self.sniffer(data, file.original_name)
        logger.info(f"File {file.id} detected as {detected_mime}")

        scan_result = self.scanner.scan(data)
        if scan_result.infected:
            reason = f"Virus detected: {', '.join(scan_result.signatures)}"
            logger.warning(f"Virus detected in {file.id}: {reason}")
            status = FileStatus.QUARANTINED
        elif is_dangerous(detected_mime):
            reason = f"Potentially dangerous file type detected: {detected_mime}"
            logger.warning(f"Dangerous file type in {file.id}: {reason}")
            status = FileStatus.QUARANTINED
        else:
            reason = None
            status = FileStatus.CLEAN

        return ProcessingOutcome(sha256=sha256, detected_mime=detected_mime, status=status, reason=reason)

    def _store_thumbnail(self, file: FileRecord, data: bytes) -> None:
        try:
            thumbnail = make_thumbnail(
                data,
                self.settings.thumbnail_max_width,
                self.settings.thumbnail_max_height,
            )
            self.blob_store.put_object(
                thumbnail_key(file.storage_key),
                thumbnail,
                THUMBNAIL_MIME,
                {"original-file-id": file.id},
            )
            logger.info(f"Thumbnail stored for {file.id}")
        except Exception as e:  # pylint: disable=broad-except
            logger.error(f"Error generating thumbnail for {file.id}: {e}")

    def _commit(self, file: FileRecord, outcome: ProcessingOutcome) -> None:
        if not db.commit_processing_result(file.id, outcome, db_path=self.db_path):
            logger.info(f"File {file.id} was finished by another attempt; result discarded")
            return

        if outcome.deduplicated_from:
            action = AuditAction.FILE_DEDUPLICATED
        elif outcome.status == FileStatus.QUARANTINED:
            action = AuditAction.FILE_QUARANTINED
        else:
            action = AuditAction.FILE_PROCESSED
        logger.info(f"File {file.id} processed with status: {outcome.status.value}")

        self.audit.record(
            None,
            action,
            'file',
            file.id,
            {
                'ownerId': file.owner_id,
                'status': outcome.status.value,
                'reason': outcome.reason,
                'detectedMime': outcome.detected_mime,
                'duplicateOf': outcome.deduplicated_from,
            },
        )

    def mark_rejected(self, file_id: str, error: str) -> bool:
        """Final verdict for a file whose processing kept failing."""
        reason = f"{PROCESSING_ERROR_PREFIX}{error}"
        rejected = db.mark_rejected(file_id, reason, db_path=self.db_path)
        if rejected:
            logger.error(f"File {file_id} rejected: {reason}")
            self.audit.record(None, AuditAction.FILE_PROCESSING_FAILED, 'file', file_id, {'error': error})
        return rejected
