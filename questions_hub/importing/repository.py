from __future__ import annotations

from copy import deepcopy
from typing import Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session, sessionmaker

from .entities import ImportJobModel
from .models import ImportJobRecord, ImportJobStatus, ImportStep


class ImportJobRepository:
    """
    Abstract persistence boundary for import job bookkeeping. All methods
    are synchronous to keep the interface minimal.
    """

    def get_job(self, job_id: str) -> Optional[ImportJobRecord]:
        raise NotImplementedError

    def save_job(self, job: ImportJobRecord) -> None:
        raise NotImplementedError

    def update_job_progress(
        self,
        job_id: str,
        current_step: Optional[ImportStep] = None,
        progress: Optional[int] = None,
        status: Optional[ImportJobStatus] = None,
    ) -> None:
        raise NotImplementedError

    def list_jobs_for_owner(self, owner_id: str) -> List[ImportJobRecord]:
        raise NotImplementedError

    def list_jobs_by_status(self, status: ImportJobStatus) -> List[ImportJobRecord]:
        raise NotImplementedError


class InMemoryImportJobRepository(ImportJobRepository):
    """
    Simple in-memory store for local runs and tests. Keeps copies of the
    dataclasses to avoid cross-mutation between calls.
    """

    def __init__(self):
        self.jobs: Dict[str, ImportJobRecord] = {}

    def _clone(self, obj):
        return deepcopy(obj)

    def get_job(self, job_id: str) -> Optional[ImportJobRecord]:
        job = self.jobs.get(job_id)
        return self._clone(job) if job else None

    def save_job(self, job: ImportJobRecord) -> None:
        self.jobs[job.id] = self._clone(job)

    def update_job_progress(
        self,
        job_id: str,
        current_step: Optional[ImportStep] = None,
        progress: Optional[int] = None,
        status: Optional[ImportJobStatus] = None,
    ) -> None:
        job = self.jobs.get(job_id)
        if not job:
            return
        if current_step is not None:
            job.current_step = current_step
        if progress is not None:
            job.progress = progress
        if status is not None:
            job.status = status

    def list_jobs_for_owner(self, owner_id: str) -> List[ImportJobRecord]:
        jobs = [self._clone(j) for j in self.jobs.values() if j.owner_id == owner_id]
        return sorted(jobs, key=lambda j: j.created_at, reverse=True)

    def list_jobs_by_status(self, status: ImportJobStatus) -> List[ImportJobRecord]:
        return [self._clone(j) for j in self.jobs.values() if j.status == status]


class SqlAlchemyImportJobRepository(ImportJobRepository):
    """
    SQL-backed repository using SQLAlchemy. Works with SQLite/Postgres URLs.
    """

    def __init__(self, session_factory: sessionmaker):
        self.SessionLocal = session_factory

    def _session(self) -> Session:
        return self.SessionLocal()

    def get_job(self, job_id: str) -> Optional[ImportJobRecord]:
        with self._session() as session:
            model = session.get(ImportJobModel, job_id)
            return _to_record(model) if model else None

    def save_job(self, job: ImportJobRecord) -> None:
        with self._session() as session:
            model = ImportJobModel(
                id=job.id,
                owner_id=job.owner_id,
                input_file_name=job.input_file_name,
                input_file_path=job.input_file_path,
                input_file_size_bytes=job.input_file_size_bytes,
                status=job.status,
                current_step=job.current_step,
                progress=job.progress,
                attempts=job.attempts,
                next_retry_at=job.next_retry_at,
                package_id=job.package_id,
                error_message=job.error_message,
                error_details=job.error_details,
                warnings_json=job.warnings_json,
                created_at=job.created_at,
                started_at=job.started_at,
                finished_at=job.finished_at,
            )
            session.merge(model)
            session.commit()

    def update_job_progress(
        self,
        job_id: str,
        current_step: Optional[ImportStep] = None,
        progress: Optional[int] = None,
        status: Optional[ImportJobStatus] = None,
    ) -> None:
        with self._session() as session:
            stmt = update(ImportJobModel).where(ImportJobModel.id == job_id)
            values = {}
            if current_step is not None:
                values["current_step"] = current_step
            if progress is not None:
                values["progress"] = progress
            if status is not None:
                values["status"] = status
            if values:
                session.execute(stmt.values(**values))
                session.commit()

    def list_jobs_for_owner(self, owner_id: str) -> List[ImportJobRecord]:
        with self._session() as session:
            stmt = (
                select(ImportJobModel)
                .where(ImportJobModel.owner_id == owner_id)
                .order_by(ImportJobModel.created_at.desc())
            )
            return [_to_record(m) for m in session.execute(stmt).scalars()]

    def list_jobs_by_status(self, status: ImportJobStatus) -> List[ImportJobRecord]:
        with self._session() as session:
            stmt = select(ImportJobModel).where(ImportJobModel.status == status)
            return [_to_record(m) for m in session.execute(stmt).scalars()]


def _to_record(model: ImportJobModel) -> ImportJobRecord:
    return ImportJobRecord(
        id=model.id,
        owner_id=model.owner_id,
        input_file_name=model.input_file_name,
        input_file_path=model.input_file_path,
        input_file_size_bytes=model.input_file_size_bytes or 0,
        status=model.status,
        current_step=model.current_step,
        progress=model.progress or 0,
        attempts=model.attempts or 0,
        next_retry_at=model.next_retry_at,
        package_id=model.package_id,
        error_message=model.error_message,
        error_details=model.error_details,
        warnings_json=model.warnings_json,
        created_at=model.created_at,
        started_at=model.started_at,
        finished_at=model.finished_at,
    )
