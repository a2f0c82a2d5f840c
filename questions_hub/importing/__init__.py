"""
Package import subsystem exports.
"""

from .config import ImportOptions
from .docx_extractor import DocxExtractor
from .entities import Author, Block, Package, Question, Tag, Tour, create_session_factory
from .errors import (
    DatabaseImportError,
    ExtractionError,
    ImportCancelledError,
    PackageImportError,
    ParsingError,
    ValidationError,
)
from .importer import PackageDbImporter
from .indexing import Indexer, NoopIndexer, WhooshQuestionIndexer
from .job_queue import RQJobQueue, WorkerConfig, run_import_job
from .models import (
    AssetReference,
    BlockDto,
    DocBlock,
    ExtractionResult,
    ImportJobRecord,
    ImportJobStatus,
    ImportStep,
    NumberingMode,
    PackageStatus,
    ParseResult,
    QuestionDto,
    TourDto,
    TourType,
)
from .parser import PackageParser
from .qhub_extractor import QhubExtractor
from .renumbering import PackageRenumberingService
from .repository import ImportJobRepository, InMemoryImportJobRepository, SqlAlchemyImportJobRepository
from .service import PackageImportService
from .storage import LocalImportStorage, StoragePaths
from .worker import ImportWorker

__all__ = [
    "AssetReference",
    "Author",
    "Block",
    "BlockDto",
    "DatabaseImportError",
    "DocBlock",
    "DocxExtractor",
    "ExtractionError",
    "ExtractionResult",
    "ImportCancelledError",
    "ImportJobRecord",
    "ImportJobRepository",
    "ImportJobStatus",
    "ImportOptions",
    "ImportStep",
    "ImportWorker",
    "Indexer",
    "InMemoryImportJobRepository",
    "LocalImportStorage",
    "NoopIndexer",
    "NumberingMode",
    "Package",
    "PackageDbImporter",
    "PackageImportError",
    "PackageImportService",
    "PackageParser",
    "PackageRenumberingService",
    "PackageStatus",
    "ParseResult",
    "ParsingError",
    "QhubExtractor",
    "Question",
    "QuestionDto",
    "RQJobQueue",
    "SqlAlchemyImportJobRepository",
    "StoragePaths",
    "Tag",
    "Tour",
    "TourDto",
    "TourType",
    "ValidationError",
    "WhooshQuestionIndexer",
    "WorkerConfig",
    "create_session_factory",
    "run_import_job",
]
