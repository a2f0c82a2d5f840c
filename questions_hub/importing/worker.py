from __future__ import annotations

import json
import logging
import threading
import traceback
from dataclasses import asdict
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Optional

from .docx_extractor import DocxExtractor
from .errors import ImportCancelledError, PackageImportError, ParsingError, ValidationError
from .importer import PackageDbImporter
from .models import ImportJobRecord, ImportJobStatus, ImportStep, ParseResult
from .parser import PackageParser
from .qhub_extractor import QhubExtractor
from .repository import ImportJobRepository
from .storage import LocalImportStorage

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Обробку було скасовано"
UNEXPECTED_ERROR_MESSAGE = "Неочікувана помилка при обробці"
NO_STRUCTURE_MESSAGE = "Не вдалося визначити структуру пакету. Перевірте формат документа."

STEP_PROGRESS = {
    ImportStep.VALIDATING: 0,
    ImportStep.EXTRACTING: 20,
    ImportStep.PARSING: 50,
    ImportStep.IMPORTING: 70,
    ImportStep.FINALIZING: 90,
}


def retry_delay(attempt: int) -> timedelta:
    if attempt <= 1:
        return timedelta(seconds=30)
    if attempt == 2:
        return timedelta(minutes=2)
    return timedelta(minutes=5)


class ImportWorker:
    """
    Drives one import job through validate -> extract -> parse -> import ->
    finalize. The worker is stateless and relies on the repository for job
    state and on the storage adapter for filesystem operations.

    Failures are recorded on the job and re-raised. A retriable failure
    under the attempt limit gets `next_retry_at` and is handed to
    `schedule_retry` (the queue re-enqueues it after the delay).
    """

    def __init__(
        self,
        repository: ImportJobRepository,
        storage: LocalImportStorage,
        importer: PackageDbImporter,
        docx_extractor: Optional[DocxExtractor] = None,
        qhub_extractor: Optional[QhubExtractor] = None,
        parser: Optional[PackageParser] = None,
        job_timeout_minutes: int = 10,
        max_retry_attempts: int = 3,
        schedule_retry: Optional[Callable[[str, timedelta], None]] = None,
    ):
        self.repo = repository
        self.storage = storage
        self.importer = importer
        self.docx_extractor = docx_extractor or DocxExtractor()
        self.qhub_extractor = qhub_extractor or QhubExtractor()
        self.parser = parser or PackageParser()
        self.job_timeout_minutes = job_timeout_minutes
        self.max_retry_attempts = max_retry_attempts
        self.schedule_retry = schedule_retry

    def run_job(self, job_id: str, cancel_event: Optional[threading.Event] = None) -> Optional[int]:
        job = self.repo.get_job(job_id)
        if not job:
            raise ValueError(f"Import job {job_id} not found")
        if job.status in (ImportJobStatus.CANCELLED, ImportJobStatus.SUCCEEDED):
            logger.info("Skipping import job %s in status %s", job_id, job.status.value)
            return job.package_id

        self._claim(job)
        cancel_event = cancel_event or threading.Event()
        timed_out = threading.Event()

        def _on_timeout() -> None:
            timed_out.set()
            cancel_event.set()

        timer = threading.Timer(self.job_timeout_minutes * 60, _on_timeout)
        timer.daemon = True
        timer.start()
        try:
            package_id, warnings = self._process(job, cancel_event)
        except ImportCancelledError:
            if timed_out.is_set():
                message = f"Перевищено час очікування обробки ({self.job_timeout_minutes} хвилин)"
                logger.warning("Job %s timed out after %s minutes", job_id, self.job_timeout_minutes)
                self._fail(job, message, None, is_retriable=False)
            else:
                self._cancel(job)
            return None
        except PackageImportError as exc:
            self._fail(job, exc.user_message, traceback.format_exc(), exc.is_retriable)
            raise
        except Exception:  # noqa: BLE001
            logger.exception("Unexpected error processing job %s", job_id)
            self._fail(job, UNEXPECTED_ERROR_MESSAGE, traceback.format_exc(), is_retriable=False)
            raise
        finally:
            timer.cancel()

        job.package_id = package_id
        job.status = ImportJobStatus.SUCCEEDED
        job.current_step = None
        job.progress = 100
        job.finished_at = datetime.utcnow()
        job.next_retry_at = None
        job.warnings_json = json.dumps(warnings, ensure_ascii=False) if warnings else None
        self.repo.save_job(job)
        logger.info("Job %s completed, package %s", job_id, package_id)
        return package_id

    def _claim(self, job: ImportJobRecord) -> None:
        job.status = ImportJobStatus.RUNNING
        job.started_at = datetime.utcnow()
        job.attempts += 1
        job.current_step = ImportStep.VALIDATING
        job.progress = 0
        job.error_message = None
        job.error_details = None
        self.repo.save_job(job)
        logger.info("Started import job %s, attempt %s", job.id, job.attempts)

    def _process(self, job: ImportJobRecord, cancel_event: threading.Event):
        input_path = Path(job.input_file_path)
        if not input_path.is_file():
            raise ValidationError(f"Файл {job.input_file_name} не знайдено")
        suffix = input_path.suffix.lower()
        if suffix not in (".docx", ".qhub"):
            raise ValidationError(f"Непідтримуваний формат файлу: {suffix}")

        self.storage.ensure_job_dirs(job.id)
        assets_dir = self.storage.paths.assets_dir(job.id)

        self._step(job, ImportStep.EXTRACTING, cancel_event)
        if suffix == ".qhub":
            result = self.qhub_extractor.extract(input_path, assets_dir, cancel_event)
            self.storage.write_json(self.storage.paths.extracted_json_path(job.id), result.to_dict())
            self._step(job, ImportStep.PARSING, cancel_event)
        else:
            extraction = self.docx_extractor.extract(input_path, assets_dir, job.id, cancel_event)
            self.storage.write_json(self.storage.paths.extracted_json_path(job.id), asdict(extraction))
            self._step(job, ImportStep.PARSING, cancel_event)
            result = self.parser.parse(extraction.blocks)
            result.warnings = extraction.warnings + result.warnings

        self.storage.write_json(self.storage.paths.output_json_path(job.id), result.to_dict())
        self._ensure_structure(result)

        self._step(job, ImportStep.IMPORTING, cancel_event)
        package_id = self.importer.import_package(result, job.owner_id, assets_dir)

        # Past this point the package exists, so cancellation is no longer honoured.
        self.repo.update_job_progress(
            job.id, current_step=ImportStep.FINALIZING, progress=STEP_PROGRESS[ImportStep.FINALIZING]
        )
        job.current_step = ImportStep.FINALIZING
        try:
            self.storage.save_original(package_id, input_path)
        except OSError as exc:
            logger.warning("Failed to save original file for package %s: %s", package_id, exc)
        return package_id, result.warnings

    def _ensure_structure(self, result: ParseResult) -> None:
        if not result.tours or result.total_questions == 0:
            raise ParsingError(
                NO_STRUCTURE_MESSAGE,
                f"tours={len(result.tours)} questions={result.total_questions} confidence={result.confidence:.2f}",
            )

    def _step(self, job: ImportJobRecord, step: ImportStep, cancel_event: threading.Event) -> None:
        stored = self.repo.get_job(job.id)
        if stored is not None and stored.status == ImportJobStatus.CANCELLED:
            cancel_event.set()
        if cancel_event.is_set():
            raise ImportCancelledError()
        job.current_step = step
        job.progress = STEP_PROGRESS[step]
        self.repo.update_job_progress(job.id, current_step=step, progress=job.progress)
        logger.debug("Job %s: %s (%s%%)", job.id, step.value, job.progress)

    def _cancel(self, job: ImportJobRecord) -> None:
        job.status = ImportJobStatus.CANCELLED
        job.error_message = CANCELLED_MESSAGE
        job.finished_at = datetime.utcnow()
        job.next_retry_at = None
        self.repo.save_job(job)
        logger.info("Job %s cancelled", job.id)

    def _fail(self, job: ImportJobRecord, message: str, details: Optional[str], is_retriable: bool) -> None:
        job.status = ImportJobStatus.FAILED
        job.error_message = message
        job.error_details = details
        if is_retriable and job.attempts < self.max_retry_attempts:
            delay = retry_delay(job.attempts)
            job.next_retry_at = datetime.utcnow() + delay
            self.repo.save_job(job)
            logger.warning(
                "Job %s failed (attempt %s/%s), retry in %s",
                job.id,
                job.attempts,
                self.max_retry_attempts,
                delay,
            )
            if self.schedule_retry is not None:
                self.schedule_retry(job.id, delay)
            return

        job.next_retry_at = None
        job.finished_at = datetime.utcnow()
        self.repo.save_job(job)
        logger.error("Job %s failed permanently: %s", job.id, message)
