"""
Example: run the full import pipeline on a local .docx or .qhub file using SQLite + Whoosh.

Usage:
    python3 import_demo.py --file /path/to/package.docx --owner-id local-user
"""

import argparse
import json
import logging
from pathlib import Path

from questions_hub.importing import (
    ImportWorker,
    InMemoryImportJobRepository,
    LocalImportStorage,
    PackageDbImporter,
    PackageImportService,
    StoragePaths,
    WhooshQuestionIndexer,
    create_session_factory,
)


def setup_logging(log_dir: Path, verbose: bool) -> None:
    log_dir.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(log_dir / "import.log", encoding="utf-8"),
        ],
        force=True,
    )


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--file", required=True, type=Path, help="Path to a .docx or .qhub package")
    parser.add_argument("--owner-id", default="local-user", help="Owner of the imported package")
    parser.add_argument("--db", default=Path("./data/questions_hub.db"), type=Path, help="SQLite DB path")
    parser.add_argument("--storage-root", default=Path("./data"), type=Path, help="Storage root for jobs/media")
    parser.add_argument("--whoosh-dir", default=Path("./data/whoosh"), type=Path, help="Whoosh index directory")
    parser.add_argument("--search", default=None, help="Run a search query after the import")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    setup_logging(args.storage_root / "logs", args.verbose)
    if not args.file.exists():
        raise FileNotFoundError(f"File not found: {args.file}")

    args.db.parent.mkdir(parents=True, exist_ok=True)
    session_factory = create_session_factory(f"sqlite+pysqlite:///{args.db}")
    storage = LocalImportStorage(StoragePaths(args.storage_root))
    indexer = WhooshQuestionIndexer(args.whoosh_dir)
    repo = InMemoryImportJobRepository()
    service = PackageImportService(repo, storage, queue=None)
    worker = ImportWorker(
        repository=repo,
        storage=storage,
        importer=PackageDbImporter(session_factory, storage, indexer=indexer),
    )

    job = service.enqueue(args.owner_id, args.file.name, args.file.read_bytes())
    print(f"Starting import job {job.id} for {args.file}")
    package_id = worker.run_job(job.id)
    final_job = repo.get_job(job.id)
    print(f"Job finished with status={final_job.status.value}, error={final_job.error_message}")

    if package_id is not None:
        print(f"Package id: {package_id}")
        for warning in json.loads(final_job.warnings_json or "[]"):
            print(f"  warning: {warning}")

    if args.search:
        for hit in indexer.search(args.search):
            print(f"  [{hit['package_title']} #{hit['number']}] {hit['text'][:80]}")


if __name__ == "__main__":
    main()
