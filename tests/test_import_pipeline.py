import json
import threading
import zipfile
from datetime import datetime

import pytest
from docx import Document

from questions_hub.importing.config import ImportOptions
from questions_hub.importing.docx_extractor import DocxExtractor
from questions_hub.importing.entities import Package, create_session_factory
from questions_hub.importing.errors import DatabaseImportError, ParsingError, ValidationError
from questions_hub.importing.importer import PackageDbImporter
from questions_hub.importing.indexing import WhooshQuestionIndexer
from questions_hub.importing.models import ImportJobRecord, ImportJobStatus, ImportStep, TourType
from questions_hub.importing.repository import InMemoryImportJobRepository, SqlAlchemyImportJobRepository
from questions_hub.importing.service import STALE_JOB_MESSAGE, PackageImportService
from questions_hub.importing.storage import LocalImportStorage, StoragePaths
from questions_hub.importing.worker import (
    CANCELLED_MESSAGE,
    NO_STRUCTURE_MESSAGE,
    ImportWorker,
    retry_delay,
)


class FakeQueue:
    def __init__(self):
        self.enqueued = []
        self.cancelled = []

    def enqueue_import_job(self, job_id):
        self.enqueued.append(job_id)

    def cancel_import_job(self, job_id):
        self.cancelled.append(job_id)


def docx_bytes(tmp_path, paragraphs):
    doc = Document()
    for text in paragraphs:
        doc.add_paragraph(text)
    path = tmp_path / "source.docx"
    doc.save(str(path))
    return path.read_bytes()


PACKAGE_PARAGRAPHS = [
    "Кубок Одеси",
    "Тур 1",
    "1. Хто муркоче на підвіконні?",
    "Відповідь: Кіт",
    "2. Хто гавкає у дворі?",
    "Відповідь: Пес",
]


@pytest.fixture
def env(tmp_path):
    session_factory = create_session_factory(f"sqlite+pysqlite:///{tmp_path / 'test.db'}")
    storage = LocalImportStorage(StoragePaths(tmp_path / "data"))
    indexer = WhooshQuestionIndexer(tmp_path / "whoosh")
    repo = InMemoryImportJobRepository()
    queue = FakeQueue()
    service = PackageImportService(repo, storage, queue)
    worker = ImportWorker(repo, storage, PackageDbImporter(session_factory, storage, indexer=indexer))
    return {
        "session_factory": session_factory,
        "storage": storage,
        "indexer": indexer,
        "repo": repo,
        "queue": queue,
        "service": service,
        "worker": worker,
    }


@pytest.mark.parametrize(
    "file_name,data,message",
    [
        ("package.pdf", b"%PDF", "Непідтримуваний формат файлу. Дозволені: .docx, .qhub"),
        ("package.docx", b"x" * 2048, "Файл занадто великий. Максимальний розмір: 1 КБ"),
        ("package.docx", b"", "Файл порожній"),
    ],
)
def test_upload_validation(tmp_path, file_name, data, message):
    repo = InMemoryImportJobRepository()
    options = ImportOptions(max_file_size_bytes=1024)
    service = PackageImportService(repo, LocalImportStorage(StoragePaths(tmp_path)), FakeQueue(), options)

    with pytest.raises(ValidationError) as exc_info:
        service.enqueue("owner", file_name, data)
    assert exc_info.value.user_message == message
    assert repo.jobs == {}


def test_docx_import_end_to_end(env, tmp_path):
    job = env["service"].enqueue("owner", "../Кубок.docx", docx_bytes(tmp_path, PACKAGE_PARAGRAPHS))

    assert env["queue"].enqueued == [job.id]
    assert job.input_file_name == "Кубок.docx"
    assert job.status == ImportJobStatus.QUEUED

    package_id = env["worker"].run_job(job.id)

    stored = env["service"].get_job(job.id, "owner")
    assert stored.status == ImportJobStatus.SUCCEEDED
    assert stored.progress == 100
    assert stored.current_step is None
    assert stored.attempts == 1
    assert stored.package_id == package_id
    assert stored.finished_at is not None

    paths = env["storage"].paths
    assert paths.extracted_json_path(job.id).is_file()
    output = json.loads(paths.output_json_path(job.id).read_text(encoding="utf-8"))
    assert output["title"] == "Кубок Одеси"
    assert output["total_questions"] == 2
    assert (paths.package_dir(package_id) / "original.docx").is_file()

    with env["session_factory"]() as session:
        package = session.get(Package, package_id)
        assert package.owner_id == "owner"
        assert [q.answer for q in package.tours[0].questions] == ["Кіт", "Пес"]

    hits = env["indexer"].search("кіт")
    assert [hit["package_id"] for hit in hits] == [package_id]
    assert hits[0]["number"] == "1"

    # A finished job is not processed again.
    assert env["worker"].run_job(job.id) == package_id
    assert env["repo"].get_job(job.id).attempts == 1


def test_document_without_structure_fails(env, tmp_path):
    job = env["service"].enqueue("owner", "notes.docx", docx_bytes(tmp_path, ["Просто нотатки", "Без питань"]))

    with pytest.raises(ParsingError):
        env["worker"].run_job(job.id)

    stored = env["repo"].get_job(job.id)
    assert stored.status == ImportJobStatus.FAILED
    assert stored.error_message == NO_STRUCTURE_MESSAGE
    assert stored.error_details
    assert stored.next_retry_at is None
    assert stored.finished_at is not None


def test_retriable_failure_is_rescheduled(env, tmp_path):
    class FlakyImporter:
        def import_package(self, result, owner_id, assets_dir):
            raise DatabaseImportError("База даних тимчасово недоступна", "locked", is_retriable=True)

    scheduled = []
    worker = ImportWorker(
        env["repo"],
        env["storage"],
        FlakyImporter(),
        max_retry_attempts=2,
        schedule_retry=lambda job_id, delay: scheduled.append((job_id, delay)),
    )
    job = env["service"].enqueue("owner", "p.docx", docx_bytes(tmp_path, PACKAGE_PARAGRAPHS))

    with pytest.raises(DatabaseImportError):
        worker.run_job(job.id)

    stored = env["repo"].get_job(job.id)
    assert stored.status == ImportJobStatus.FAILED
    assert stored.next_retry_at is not None
    assert stored.finished_at is None
    assert scheduled == [(job.id, retry_delay(1))]

    with pytest.raises(DatabaseImportError):
        worker.run_job(job.id)

    stored = env["repo"].get_job(job.id)
    assert stored.attempts == 2
    assert stored.next_retry_at is None
    assert stored.finished_at is not None
    assert len(scheduled) == 1


def test_retry_delays():
    assert retry_delay(1).total_seconds() == 30
    assert retry_delay(2).total_seconds() == 120
    assert retry_delay(5).total_seconds() == 300


def test_cancelled_job_is_skipped(env, tmp_path):
    job = env["service"].enqueue("owner", "p.docx", docx_bytes(tmp_path, PACKAGE_PARAGRAPHS))

    assert env["service"].cancel(job.id, "owner")
    assert env["queue"].cancelled == [job.id]
    assert not env["service"].cancel(job.id, "owner")

    assert env["worker"].run_job(job.id) is None
    stored = env["repo"].get_job(job.id)
    assert stored.status == ImportJobStatus.CANCELLED
    assert stored.error_message == CANCELLED_MESSAGE
    assert stored.attempts == 0


def test_cancel_requires_owner(env, tmp_path):
    job = env["service"].enqueue("owner", "p.docx", docx_bytes(tmp_path, PACKAGE_PARAGRAPHS))

    assert not env["service"].cancel(job.id, "someone-else")
    assert env["service"].get_job(job.id, "someone-else") is None
    assert env["repo"].get_job(job.id).status == ImportJobStatus.QUEUED


def test_cancel_during_extraction(env, tmp_path):
    service = env["service"]

    class CancellingExtractor(DocxExtractor):
        def extract(self, file_path, assets_dir, job_id, cancel_event=None):
            extraction = super().extract(file_path, assets_dir, job_id, cancel_event)
            service.cancel(job_id, "owner")
            return extraction

    worker = ImportWorker(
        env["repo"],
        env["storage"],
        env["worker"].importer,
        docx_extractor=CancellingExtractor(),
    )
    job = service.enqueue("owner", "p.docx", docx_bytes(tmp_path, PACKAGE_PARAGRAPHS))

    assert worker.run_job(job.id) is None

    stored = env["repo"].get_job(job.id)
    assert stored.status == ImportJobStatus.CANCELLED
    assert stored.package_id is None
    with env["session_factory"]() as session:
        assert session.query(Package).count() == 0


def test_preset_cancel_event(env, tmp_path):
    job = env["service"].enqueue("owner", "p.docx", docx_bytes(tmp_path, PACKAGE_PARAGRAPHS))
    cancel = threading.Event()
    cancel.set()

    assert env["worker"].run_job(job.id, cancel_event=cancel) is None
    assert env["repo"].get_job(job.id).status == ImportJobStatus.CANCELLED


def test_missing_job_raises(env):
    with pytest.raises(ValueError):
        env["worker"].run_job("nope")


def test_list_jobs_newest_first(env, tmp_path):
    data = docx_bytes(tmp_path, PACKAGE_PARAGRAPHS)
    first = env["service"].enqueue("owner", "a.docx", data)
    second = env["service"].enqueue("owner", "b.docx", data)
    env["service"].enqueue("other", "c.docx", data)

    jobs = env["service"].list_jobs("owner")
    assert {j.id for j in jobs} == {first.id, second.id}
    assert len(env["service"].list_jobs("owner", limit=1)) == 1


def test_recover_stale_jobs(env):
    repo = env["repo"]
    repo.save_job(ImportJobRecord(id="a", owner_id="o", input_file_name="a.docx", input_file_path="/x/a.docx",
                                  status=ImportJobStatus.RUNNING, current_step=ImportStep.PARSING))
    repo.save_job(ImportJobRecord(id="b", owner_id="o", input_file_name="b.docx", input_file_path="/x/b.docx"))

    assert env["service"].recover_stale_jobs() == 1

    stale = repo.get_job("a")
    assert stale.status == ImportJobStatus.FAILED
    assert stale.error_message == STALE_JOB_MESSAGE
    assert repo.get_job("b").status == ImportJobStatus.QUEUED
    assert env["service"].recover_stale_jobs() == 0


def test_sqlalchemy_repository_round_trip(tmp_path):
    repo = SqlAlchemyImportJobRepository(create_session_factory(f"sqlite+pysqlite:///{tmp_path / 'jobs.db'}"))
    job = ImportJobRecord(
        id="job-1",
        owner_id="owner",
        input_file_name="Пакет.docx",
        input_file_path="/data/jobs/job-1/input/Пакет.docx",
        input_file_size_bytes=12,
        created_at=datetime(2024, 5, 1, 12, 0),
    )
    repo.save_job(job)
    repo.update_job_progress("job-1", current_step=ImportStep.EXTRACTING, progress=20, status=ImportJobStatus.RUNNING)

    stored = repo.get_job("job-1")
    assert stored.input_file_name == "Пакет.docx"
    assert stored.status == ImportJobStatus.RUNNING
    assert stored.current_step == ImportStep.EXTRACTING
    assert stored.progress == 20

    stored.status = ImportJobStatus.SUCCEEDED
    stored.warnings_json = json.dumps(["попередження"], ensure_ascii=False)
    repo.save_job(stored)

    assert [j.id for j in repo.list_jobs_for_owner("owner")] == ["job-1"]
    assert repo.list_jobs_by_status(ImportJobStatus.RUNNING) == []
    assert json.loads(repo.get_job("job-1").warnings_json) == ["попередження"]
    assert repo.get_job("missing") is None


def qhub_bytes(tmp_path, manifest, assets=None):
    path = tmp_path / "upload.qhub"
    with zipfile.ZipFile(path, "w") as archive:
        archive.writestr("package.json", json.dumps(manifest, ensure_ascii=False))
        for name, data in (assets or {}).items():
            archive.writestr(name, data)
    return path.read_bytes()


def question(number, text):
    return {"number": number, "text": text, "answer": "в"}


def test_imported_archive_is_renumbered(env, tmp_path):
    manifest = {
        "formatVersion": "1.0",
        "title": "Пакет",
        "numberingMode": "Global",
        "tours": [
            {"number": "1", "questions": [question("1", "перше")]},
            {"number": "Р", "isWarmup": True, "questions": [question("7", "розминка")]},
            {"number": "2", "questions": [question("5", "друге")]},
        ],
    }
    job = env["service"].enqueue("owner", "p.qhub", qhub_bytes(tmp_path, manifest))

    package_id = env["worker"].run_job(job.id)

    with env["session_factory"]() as session:
        package = session.get(Package, package_id)
        assert [(t.type, t.order_index, t.number, [q.number for q in t.questions]) for t in package.tours] == [
            (TourType.WARMUP, 0, "0", ["1"]),
            (TourType.REGULAR, 1, "1", ["1"]),
            (TourType.REGULAR, 2, "2", ["2"]),
        ]
    assert [hit["number"] for hit in env["indexer"].search("друге")] == ["2"]


def test_archives_with_same_asset_name_keep_their_own_media(env, tmp_path):
    manifest = {
        "formatVersion": "1.0",
        "title": "Пакет",
        "tours": [{"number": "1", "questions": [dict(question("1", "фото"), handoutAssetFileName="pic.png")]}],
    }
    urls = {}
    for content in (b"FIRST", b"SECOND"):
        job = env["service"].enqueue("owner", "p.qhub", qhub_bytes(tmp_path, manifest, {"assets/pic.png": content}))
        package_id = env["worker"].run_job(job.id)
        with env["session_factory"]() as session:
            urls[content] = session.get(Package, package_id).tours[0].questions[0].handout_url

    assert urls[b"FIRST"] != urls[b"SECOND"]
    media_dir = env["storage"].paths.media_handouts_dir()
    for content, url in urls.items():
        assert url.startswith("/media/qa_")
        assert (media_dir / url.rsplit("/", 1)[1]).read_bytes() == content
