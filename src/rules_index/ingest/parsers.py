"""Alternate extraction collaborators used by the fallback path."""
from __future__ import annotations

import logging
import subprocess
import tempfile
import time
from pathlib import Path
from typing import Callable, List, Optional

import httpx

from rules_index.storage import DocumentStorage
from rules_index.telemetry import traced_duration

from .errors import AdvancedParseError, ExtractionError, FetchError
from .extractors import PDFExtractor, split_markdown_pages
from .models import Page

LOGGER = logging.getLogger(__name__)

DEFAULT_LLAMAPARSE_BASE_URL = "https://api.cloud.llamaindex.ai"
DEFAULT_POLL_INTERVAL_SECONDS = 5.0
DEFAULT_MAX_POLLS = 60


class OcrMyPdfParser:
    """Re-run the PDF through ``ocrmypdf`` and extract the OCR text layer."""

    stage = "ocr"

    def __init__(
        self,
        storage: DocumentStorage,
        *,
        language: str = "eng",
        extractor: Optional[PDFExtractor] = None,
    ) -> None:
        self.storage = storage
        self.language = language
        self.extractor = extractor or PDFExtractor()

    def parse(self, path: str) -> List[Page]:
        try:
            data = self.storage.fetch(path)
            ocr_data = self._perform_ocr(data)
            return self.extractor.extract(ocr_data)
        except (FetchError, ExtractionError) as error:
            raise AdvancedParseError(f"OCR extraction failed: {error}", stage=self.stage, cause=error) from error

    def _perform_ocr(self, data: bytes) -> bytes:
        with tempfile.TemporaryDirectory() as workdir:
            source = Path(workdir) / "source.pdf"
            target = Path(workdir) / "ocr.pdf"
            source.write_bytes(data)
            cmd = [
                "ocrmypdf",
                "--force-ocr",
                "--output-type",
                "pdf",
                "-l",
                self.language,
                str(source),
                str(target),
            ]
            LOGGER.debug("Running OCR command: %s", " ".join(cmd))
            try:
                with traced_duration("ocr.ocrmypdf", logger=LOGGER, language=self.language):
                    subprocess.run(cmd, check=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
            except FileNotFoundError as exc:
                raise AdvancedParseError("ocrmypdf is not installed", stage=self.stage, cause=exc) from exc
            except subprocess.CalledProcessError as exc:
                raise AdvancedParseError(
                    f"ocrmypdf failed: {exc.stderr.decode(errors='ignore')}", stage=self.stage, cause=exc
                ) from exc
            return target.read_bytes()


class LlamaParseClient:
    """Upload a document to LlamaParse, poll the job and split the markdown result into pages."""

    stage = "llamaparse"

    def __init__(
        self,
        storage: DocumentStorage,
        *,
        api_key: str,
        base_url: str = DEFAULT_LLAMAPARSE_BASE_URL,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        max_polls: int = DEFAULT_MAX_POLLS,
        client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.storage = storage
        self.poll_interval = poll_interval
        self.max_polls = max_polls
        self._client = client or httpx.Client(
            base_url=base_url,
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=60.0,
        )
        self._sleep = sleep

    def close(self) -> None:
        self._client.close()

    def parse(self, path: str) -> List[Page]:
        try:
            data = self.storage.fetch(path)
        except FetchError as error:
            raise AdvancedParseError(str(error), stage=self.stage, cause=error) from error

        try:
            with traced_duration("llamaparse.job", logger=LOGGER, path=path):
                job_id = self._upload(Path(path).name, data)
                self._wait_for_job(job_id)
                markdown = self._fetch_markdown(job_id)
        except httpx.HTTPError as error:
            raise AdvancedParseError(f"LlamaParse request failed: {error}", stage=self.stage, cause=error) from error

        pages = split_markdown_pages(markdown)
        LOGGER.info("LlamaParse job %s returned %s chars in %s pages", job_id, len(markdown), len(pages))
        return pages

    def _upload(self, filename: str, data: bytes) -> str:
        response = self._client.post(
            "/api/parsing/upload",
            files={"file": (filename, data, "application/pdf")},
        )
        response.raise_for_status()
        job_id = response.json().get("id")
        if not job_id:
            raise AdvancedParseError("LlamaParse upload returned no job id", stage=self.stage)
        return str(job_id)

    def _wait_for_job(self, job_id: str) -> None:
        for _ in range(self.max_polls):
            self._sleep(self.poll_interval)
            response = self._client.get(f"/api/parsing/job/{job_id}")
            if response.is_error:
                LOGGER.warning("LlamaParse status check for %s failed with %s", job_id, response.status_code)
                continue
            payload = response.json()
            status = str(payload.get("status", "")).upper()
            if status == "SUCCESS":
                return
            if status == "ERROR":
                raise AdvancedParseError(
                    f"LlamaParse parsing failed: {payload.get('error') or 'Unknown error'}", stage=self.stage
                )
        raise AdvancedParseError(
            f"LlamaParse job {job_id} did not finish after {self.max_polls} polls", stage="timeout"
        )

    def _fetch_markdown(self, job_id: str) -> str:
        response = self._client.get(f"/api/parsing/job/{job_id}/result/markdown")
        response.raise_for_status()
        payload = response.json()
        return payload.get("markdown") or payload.get("text") or ""

