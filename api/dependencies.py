from __future__ import annotations

from functools import lru_cache

from sqlalchemy.orm import sessionmaker

from questions_hub.importing import (
    ImportJobRepository,
    ImportOptions,
    LocalImportStorage,
    PackageImportService,
    PackageRenumberingService,
    RQJobQueue,
    SqlAlchemyImportJobRepository,
    StoragePaths,
    WhooshQuestionIndexer,
    WorkerConfig,
    create_session_factory,
)


@lru_cache(maxsize=1)
def get_options() -> ImportOptions:
    return ImportOptions.from_env()


@lru_cache(maxsize=1)
def get_session_factory() -> sessionmaker:
    return create_session_factory(get_options().database_url)


@lru_cache(maxsize=1)
def get_repo() -> ImportJobRepository:
    return SqlAlchemyImportJobRepository(get_session_factory())


@lru_cache(maxsize=1)
def get_storage() -> LocalImportStorage:
    return LocalImportStorage(StoragePaths(get_options().storage_root))


@lru_cache(maxsize=1)
def get_indexer() -> WhooshQuestionIndexer:
    return WhooshQuestionIndexer(get_options().whoosh_dir)


@lru_cache(maxsize=1)
def get_queue() -> RQJobQueue:
    return RQJobQueue(WorkerConfig.from_options(get_options()))


@lru_cache(maxsize=1)
def get_import_service() -> PackageImportService:
    return PackageImportService(get_repo(), get_storage(), get_queue(), get_options())


@lru_cache(maxsize=1)
def get_renumbering_service() -> PackageRenumberingService:
    return PackageRenumberingService(get_session_factory(), indexer=get_indexer())
