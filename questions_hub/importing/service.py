from __future__ import annotations

import logging
import os
import uuid
from datetime import datetime
from typing import List, Optional, Protocol

from .config import ImportOptions, format_file_size
from .errors import ValidationError
from .models import ImportJobRecord, ImportJobStatus
from .repository import ImportJobRepository
from .storage import LocalImportStorage
from .worker import CANCELLED_MESSAGE

logger = logging.getLogger(__name__)

STALE_JOB_MESSAGE = "Обробку було перервано через перезапуск сервера"


class JobQueue(Protocol):
    def enqueue_import_job(self, job_id: str):
        ...

    def cancel_import_job(self, job_id: str) -> None:
        ...


class PackageImportService:
    """
    Entry point for uploads: validates the file, stores it under the job
    folder, records a Queued job and hands it to the queue. Also lists,
    cancels and recovers jobs.
    """

    def __init__(
        self,
        repository: ImportJobRepository,
        storage: LocalImportStorage,
        queue: Optional[JobQueue],
        options: Optional[ImportOptions] = None,
    ):
        self.repo = repository
        self.storage = storage
        self.queue = queue
        self.options = options or ImportOptions()

    def enqueue(self, owner_id: str, file_name: str, data: bytes) -> ImportJobRecord:
        file_name = os.path.basename(file_name or "")
        self.validate_upload(file_name, len(data))

        job_id = uuid.uuid4().hex
        input_path = self.storage.save_upload(job_id, file_name, data)
        job = ImportJobRecord(
            id=job_id,
            owner_id=owner_id,
            input_file_name=file_name,
            input_file_path=str(input_path),
            input_file_size_bytes=len(data),
            status=ImportJobStatus.QUEUED,
            created_at=datetime.utcnow(),
        )
        self.repo.save_job(job)
        logger.info("Created import job %s for file %s", job_id, file_name)

        if self.queue is not None:
            self.queue.enqueue_import_job(job_id)
        return job

    def validate_upload(self, file_name: str, size_bytes: int) -> None:
        if not self.options.is_extension_allowed(file_name):
            allowed = ", ".join(self.options.allowed_extensions)
            raise ValidationError(f"Непідтримуваний формат файлу. Дозволені: {allowed}")
        if size_bytes > self.options.max_file_size_bytes:
            limit = format_file_size(self.options.max_file_size_bytes)
            raise ValidationError(f"Файл занадто великий. Максимальний розмір: {limit}")
        if size_bytes == 0:
            raise ValidationError("Файл порожній")

    def get_job(self, job_id: str, owner_id: Optional[str] = None) -> Optional[ImportJobRecord]:
        job = self.repo.get_job(job_id)
        if job is None or (owner_id is not None and job.owner_id != owner_id):
            return None
        return job

    def list_jobs(self, owner_id: str, limit: int = 10) -> List[ImportJobRecord]:
        return self.repo.list_jobs_for_owner(owner_id)[:limit]

    def cancel(self, job_id: str, owner_id: str) -> bool:
        """Cancel a queued or running job owned by `owner_id`."""
        job = self.get_job(job_id, owner_id)
        if job is None or job.status not in (ImportJobStatus.QUEUED, ImportJobStatus.RUNNING):
            return False
        job.status = ImportJobStatus.CANCELLED
        job.error_message = CANCELLED_MESSAGE
        job.finished_at = datetime.utcnow()
        job.next_retry_at = None
        self.repo.save_job(job)
        if self.queue is not None:
            self.queue.cancel_import_job(job_id)
        logger.info("Import job %s cancelled by %s", job_id, owner_id)
        return True

    def recover_stale_jobs(self) -> int:
        """Mark jobs left Running by a previous process as failed."""
        stale = self.repo.list_jobs_by_status(ImportJobStatus.RUNNING)
        if not stale:
            logger.info("No stale import jobs found")
            return 0
        for job in stale:
            job.status = ImportJobStatus.FAILED
            job.error_message = STALE_JOB_MESSAGE
            job.finished_at = datetime.utcnow()
            self.repo.save_job(job)
        logger.warning("Marked %s stale import jobs as failed", len(stale))
        return len(stale)
