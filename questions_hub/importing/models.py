from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class TourType(str, Enum):
    REGULAR = "regular"
    WARMUP = "warmup"
    SHOOTOUT = "shootout"


class NumberingMode(str, Enum):
    GLOBAL = "Global"
    PER_TOUR = "PerTour"
    MANUAL = "Manual"


class PackageStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class ImportJobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ImportStep(str, Enum):
    VALIDATING = "Validating"
    EXTRACTING = "Extracting"
    PARSING = "Parsing"
    IMPORTING = "Importing"
    FINALIZING = "Finalizing"


@dataclass
class AssetReference:
    file_name: str
    relative_url: str
    content_type: str
    size_bytes: int = 0


@dataclass
class DocBlock:
    index: int
    text: str
    style_id: Optional[str] = None
    is_bold: bool = False
    is_italic: bool = False
    font_size_half_points: Optional[int] = None
    assets: List[AssetReference] = field(default_factory=list)

    @property
    def font_size_points(self) -> Optional[float]:
        if self.font_size_half_points is None:
            return None
        return self.font_size_half_points / 2.0


@dataclass
class ExtractionResult:
    blocks: List[DocBlock]
    assets: List[AssetReference]
    warnings: List[str] = field(default_factory=list)


@dataclass
class QuestionDto:
    number: str
    order_index: int = 0
    text: str = ""
    answer: str = ""
    accepted_answers: Optional[str] = None
    rejected_answers: Optional[str] = None
    comment: Optional[str] = None
    source: Optional[str] = None
    authors: List[str] = field(default_factory=list)
    host_instructions: Optional[str] = None
    handout_text: Optional[str] = None
    handout_asset_file_name: Optional[str] = None
    handout_asset_url: Optional[str] = None
    comment_asset_file_name: Optional[str] = None
    comment_asset_url: Optional[str] = None

    @property
    def has_text(self) -> bool:
        return bool(self.text and self.text.strip())

    @property
    def has_answer(self) -> bool:
        return bool(self.answer and self.answer.strip())


@dataclass
class BlockDto:
    name: Optional[str] = None
    order_index: int = 0
    preamble: Optional[str] = None
    editors: List[str] = field(default_factory=list)
    questions: List[QuestionDto] = field(default_factory=list)


@dataclass
class TourDto:
    number: str
    order_index: int = 0
    type: TourType = TourType.REGULAR
    editors: List[str] = field(default_factory=list)
    preamble: Optional[str] = None
    comment: Optional[str] = None
    questions: List[QuestionDto] = field(default_factory=list)
    blocks: List[BlockDto] = field(default_factory=list)

    @property
    def is_warmup(self) -> bool:
        return self.type == TourType.WARMUP

    @property
    def is_shootout(self) -> bool:
        return self.type == TourType.SHOOTOUT

    def all_questions(self) -> List[QuestionDto]:
        """Block questions in block order followed by questions attached to the tour directly."""
        collected: List[QuestionDto] = []
        for block in self.blocks:
            collected.extend(block.questions)
        collected.extend(self.questions)
        return collected


def demote_duplicate_special_tours(tours: List[TourDto]) -> List[TourDto]:
    """
    Keep the first warmup and the first shootout tour; any later tour of the
    same type becomes regular. Returns the demoted tours.
    """
    seen = set()
    demoted: List[TourDto] = []
    for tour in tours:
        if tour.type == TourType.REGULAR:
            continue
        if tour.type in seen:
            tour.type = TourType.REGULAR
            demoted.append(tour)
        else:
            seen.add(tour.type)
    return demoted


@dataclass
class ParseResult:
    title: Optional[str] = None
    description: Optional[str] = None
    preamble: Optional[str] = None
    source_url: Optional[str] = None
    played_from: Optional[date] = None
    played_to: Optional[date] = None
    editors: List[str] = field(default_factory=list)
    shared_editors: bool = False
    package_editors: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    numbering_mode: NumberingMode = NumberingMode.GLOBAL
    tours: List[TourDto] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    confidence: float = 1.0

    @property
    def total_questions(self) -> int:
        return sum(len(tour.all_questions()) for tour in self.tours)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["total_questions"] = self.total_questions
        return data


@dataclass
class ImportJobRecord:
    id: str
    owner_id: str
    input_file_name: str
    input_file_path: str
    input_file_size_bytes: int = 0
    status: ImportJobStatus = ImportJobStatus.QUEUED
    current_step: Optional[ImportStep] = None
    progress: int = 0
    attempts: int = 0
    next_retry_at: Optional[datetime] = None
    package_id: Optional[int] = None
    error_message: Optional[str] = None
    error_details: Optional[str] = None
    warnings_json: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
