"""
Malware scanner adapters.

The scanning engine is an external service; the pipeline only needs a verdict
(infected or not, plus signature names) for a byte buffer.
"""

import logging
from typing import Optional

import requests

from files_ingest.errors import ScannerUnavailable
from files_ingest.schemas import ScanResult
from files_ingest.settings import Settings, get_settings

logger = logging.getLogger(__name__)


class BaseScanner:
    """Base class for malware scanners (to be extended by specific implementations)"""

    def scan(self, data: bytes) -> ScanResult:
        raise NotImplementedError


class HttpScanner(BaseScanner):
    """Scanner reached over HTTP.

    The service accepts a multipart upload in a ``file`` field and answers
    ``{"infected": bool, "signatures": [...]}``.
    """

    def __init__(self, scan_url: str, timeout: float = 60.0, session: Optional[requests.Session] = None):
        self.scan_url = scan_url
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: Settings) -> "HttpScanner":
        return cls(settings.scanner_url, timeout=settings.scanner_timeout_seconds)

    def scan(self, data: bytes) -> ScanResult:
        logger.info(f"Scanning {len(data)} bytes via {self.scan_url}")
        try:
            response = self.session.post(
                self.scan_url,
                files={"file": ("upload", data, "application/octet-stream")},
                timeout=self.timeout,
            )
            response.raise_for_status()
            result = ScanResult.model_validate(response.json())
        except requests.exceptions.RequestException as e:
            logger.error(f"Scanner call failed: {str(e)}")
            raise ScannerUnavailable(f"Virus scanning failed: {str(e)}") from e
        except ValueError as e:
            logger.error(f"Scanner returned an unreadable verdict: {str(e)}")
            raise ScannerUnavailable(f"Virus scanning failed: {str(e)}") from e

        if result.infected:
            logger.warning(f"Scanner reported infection: {', '.join(result.signatures)}")
        return result


class ScannerFactory:
    """Factory to build the configured scanner"""

    @staticmethod
    def get_scanner(settings: Optional[Settings] = None) -> BaseScanner:
        settings = settings or get_settings()
        return HttpScanner.from_settings(settings)
