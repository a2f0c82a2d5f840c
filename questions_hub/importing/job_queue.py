from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from redis import Redis
from rq import Queue, Worker
from rq.exceptions import NoSuchJobError
from rq.job import Job

from .config import ImportOptions
from .entities import create_session_factory
from .importer import PackageDbImporter
from .indexing import WhooshQuestionIndexer
from .qhub_extractor import QhubExtractor
from .repository import SqlAlchemyImportJobRepository
from .storage import LocalImportStorage, StoragePaths
from .worker import ImportWorker

logger = logging.getLogger(__name__)


@dataclass
class WorkerConfig:
    database_url: str
    storage_root: str
    whoosh_index_dir: str
    redis_url: str = "redis://localhost:6379/0"
    queue_name: str = "package-imports"
    job_timeout_minutes: int = 10
    max_retry_attempts: int = 3
    download_timeout_seconds: float = 30.0

    @classmethod
    def from_options(cls, options: ImportOptions) -> "WorkerConfig":
        return cls(
            database_url=options.database_url,
            storage_root=str(options.storage_root),
            whoosh_index_dir=str(options.whoosh_dir),
            redis_url=options.redis_url,
            queue_name=options.queue_name,
            job_timeout_minutes=options.job_timeout_minutes,
            max_retry_attempts=options.max_retry_attempts,
            download_timeout_seconds=options.download_timeout_seconds,
        )


def build_worker(config: WorkerConfig, schedule_retry=None) -> ImportWorker:
    session_factory = create_session_factory(config.database_url)
    storage = LocalImportStorage(StoragePaths(Path(config.storage_root)))
    importer = PackageDbImporter(
        session_factory,
        storage,
        indexer=WhooshQuestionIndexer(Path(config.whoosh_index_dir)),
    )
    return ImportWorker(
        repository=SqlAlchemyImportJobRepository(session_factory),
        storage=storage,
        importer=importer,
        qhub_extractor=QhubExtractor(timeout=config.download_timeout_seconds),
        job_timeout_minutes=config.job_timeout_minutes,
        max_retry_attempts=config.max_retry_attempts,
        schedule_retry=schedule_retry,
    )


def run_import_job(job_id: str, config: WorkerConfig) -> None:
    """
    RQ task entrypoint. Creates all required components and executes an import job.
    """
    queue = RQJobQueue(config)

    def _schedule_retry(retry_job_id: str, delay: timedelta) -> None:
        queue.enqueue_retry(retry_job_id, delay)

    worker = build_worker(config, schedule_retry=_schedule_retry)
    worker.run_job(job_id)


class RQJobQueue:
    """
    Redis-backed job queue using RQ. The queue pushes jobs to Redis and workers
    can be started by calling `work()` in a dedicated process.
    """

    def __init__(self, config: WorkerConfig):
        self.config = config
        self.redis = Redis.from_url(config.redis_url)
        self.queue = Queue(config.queue_name, connection=self.redis)

    def enqueue_import_job(self, job_id: str):
        """
        Enqueue an import job. RQ job_id is set to the import job id for idempotency.
        """
        return self.queue.enqueue(
            run_import_job,
            job_id,
            self.config,
            job_id=job_id,
            job_timeout=self.config.job_timeout_minutes * 60 + 60,
        )

    def enqueue_retry(self, job_id: str, delay: timedelta):
        # A fresh RQ id per attempt; the finished attempt still holds the original one.
        return self.queue.enqueue_in(delay, run_import_job, job_id, self.config, job_id=f"{job_id}-retry-{delay.seconds}")

    def cancel_import_job(self, job_id: str) -> None:
        try:
            Job.fetch(job_id, connection=self.redis).cancel()
        except NoSuchJobError:
            logger.debug("RQ job %s already gone", job_id)

    def work(self):
        worker = Worker([self.queue], connection=self.redis)
        worker.work(with_scheduler=True)
