from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from .entities import MAX_SHORT_FIELD_LENGTH, Author, Block, Package, Question, Tag, Tour
from .errors import DatabaseImportError
from .indexing import Indexer, NoopIndexer
from .models import PackageStatus, ParseResult, QuestionDto
from .renumbering import PackageRenumberingService, ordered_questions
from .storage import LocalImportStorage

logger = logging.getLogger(__name__)

DEFAULT_PACKAGE_TITLE = "Імпортований пакет"
_CITY_SUFFIX = re.compile(r"\s*\([^)]+\)\s*$")
_FORBIDDEN_NAME_CHARS = frozenset(':?!"«»')


def parse_author_name(full_name: str) -> Tuple[Optional[str], Optional[str]]:
    """
    Split "Ім'я Прізвище (Місто)." into (first, last). Anything other than
    exactly two plausible words yields (None, None).
    """
    name = _CITY_SUFFIX.sub("", full_name.strip().rstrip(".,;")).strip().rstrip(".,;")
    parts = name.split()
    if len(parts) != 2:
        return None, None
    if not all(_is_valid_name_part(p) for p in parts):
        return None, None
    return parts[0], parts[1]


def _is_valid_name_part(part: str) -> bool:
    if not part or not part.strip():
        return False
    if any(ch.isdigit() for ch in part):
        return False
    if any(ch in _FORBIDDEN_NAME_CHARS for ch in part):
        return False
    return part[0].isalpha()


def truncate(text: Optional[str], max_length: int = MAX_SHORT_FIELD_LENGTH) -> Optional[str]:
    if not text:
        return text
    return text if len(text) <= max_length else text[:max_length]


class PackageDbImporter:
    """
    Persists a ParseResult as a Draft package. The graph is renumbered
    before the flush and written in one transaction; on any failure nothing
    is kept and DatabaseImportError is raised.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        storage: LocalImportStorage,
        indexer: Optional[Indexer] = None,
    ):
        self.session_factory = session_factory
        self.storage = storage
        self.indexer = indexer or NoopIndexer()
        self.renumbering = PackageRenumberingService(session_factory)

    def import_package(self, result: ParseResult, owner_id: str, job_assets_dir: Path) -> int:
        job_assets_dir = Path(job_assets_dir)
        logger.info("Importing package: %s", result.title)
        with self.session_factory() as session:
            try:
                package = self._build_package(session, result, owner_id, job_assets_dir)
                self.renumbering.renumber_in_memory(package)
                session.add(package)
                session.commit()
            except Exception as exc:  # noqa: BLE001
                session.rollback()
                logger.exception("Failed to import package %s", result.title)
                raise DatabaseImportError(
                    "Не вдалося зберегти пакет в базу даних",
                    str(exc),
                    # Locked database or dropped connection.
                    is_retriable=isinstance(exc, OperationalError),
                ) from exc

            tours = sorted(package.tours, key=lambda t: t.order_index)
            questions = [q for tour in tours for q in ordered_questions(tour)]
            logger.info(
                "Package imported: id=%s tours=%s questions=%s",
                package.id,
                len(package.tours),
                len(questions),
            )
            self.indexer.index_package(package.id, package.title, questions)
            return package.id

    def _build_package(self, session: Session, result: ParseResult, owner_id: str, assets_dir: Path) -> Package:
        authors_cache: Dict[Tuple[str, str], Author] = {}
        package = Package(
            title=result.title or DEFAULT_PACKAGE_TITLE,
            description=result.description,
            preamble=result.preamble,
            source_url=result.source_url,
            played_from=result.played_from,
            played_to=result.played_to,
            status=PackageStatus.DRAFT,
            numbering_mode=result.numbering_mode,
            shared_editors=result.shared_editors,
            total_questions=result.total_questions,
            owner_id=owner_id,
        )
        if result.shared_editors:
            package.editors = self._resolve_authors(session, result.package_editors, authors_cache)
        package.tags = self._resolve_tags(session, result.tags)

        for tour_dto in result.tours:
            # Header editors of a document without shared editors apply to tours that name none.
            tour_editor_names = tour_dto.editors or ([] if result.shared_editors else result.editors)
            tour = Tour(
                number=tour_dto.number,
                order_index=tour_dto.order_index,
                type=tour_dto.type,
                preamble=tour_dto.preamble,
                comment=tour_dto.comment,
                editors=self._resolve_authors(session, tour_editor_names, authors_cache),
            )
            package.tours.append(tour)

            # One counter across blocks keeps order_index sequential within the tour.
            order_index = 0
            for block_dto in tour_dto.blocks:
                block = Block(
                    name=block_dto.name,
                    order_index=block_dto.order_index,
                    preamble=block_dto.preamble,
                    editors=self._resolve_authors(session, block_dto.editors, authors_cache),
                )
                tour.blocks.append(block)
                for question_dto in block_dto.questions:
                    question = self._build_question(session, question_dto, order_index, assets_dir, authors_cache)
                    question.block = block
                    tour.questions.append(question)
                    order_index += 1

            for question_dto in tour_dto.questions:
                question = self._build_question(session, question_dto, order_index, assets_dir, authors_cache)
                tour.questions.append(question)
                order_index += 1
        return package

    def _build_question(
        self,
        session: Session,
        dto: QuestionDto,
        order_index: int,
        assets_dir: Path,
        authors_cache: Dict[Tuple[str, str], Author],
    ) -> Question:
        return Question(
            order_index=order_index,
            number=dto.number,
            host_instructions=truncate(dto.host_instructions),
            text=dto.text or "",
            handout_text=dto.handout_text,
            handout_url=self._resolve_asset_url(dto.handout_asset_file_name, dto.handout_asset_url, assets_dir),
            answer=truncate(dto.answer) or "",
            accepted_answers=truncate(dto.accepted_answers),
            rejected_answers=truncate(dto.rejected_answers),
            comment=dto.comment,
            comment_attachment_url=self._resolve_asset_url(
                dto.comment_asset_file_name, dto.comment_asset_url, assets_dir
            ),
            source=dto.source,
            authors=self._resolve_authors(session, dto.authors, authors_cache),
        )

    def _resolve_asset_url(self, file_name: Optional[str], fallback_url: Optional[str], assets_dir: Path) -> Optional[str]:
        if file_name:
            url = self.storage.publish_media(assets_dir / file_name)
            if url:
                return url
        return fallback_url or None

    # region Authors and tags
    def _resolve_authors(
        self,
        session: Session,
        names: Iterable[str],
        cache: Dict[Tuple[str, str], Author],
    ) -> List[Author]:
        authors: List[Author] = []
        seen = set()
        for name in names:
            if not name or not name.strip() or name in seen:
                continue
            seen.add(name)
            first, last = parse_author_name(name)
            if first is None or last is None:
                logger.warning("Invalid author name format, skipping: %s", name)
                continue
            key = (first, last)
            if key not in cache:
                cache[key] = self._get_or_create_author(session, first, last)
            if cache[key] not in authors:
                authors.append(cache[key])
        return authors

    def _get_or_create_author(self, session: Session, first_name: str, last_name: str) -> Author:
        stmt = select(Author).where(Author.first_name == first_name, Author.last_name == last_name)
        author = session.execute(stmt).scalar_one_or_none()
        if author is not None:
            return author
        try:
            with session.begin_nested():
                author = Author(first_name=first_name, last_name=last_name)
                session.add(author)
                session.flush()
            return author
        except IntegrityError:
            # Created concurrently by another import.
            return session.execute(stmt).scalar_one()

    def _resolve_tags(self, session: Session, names: Iterable[str]) -> List[Tag]:
        tags: List[Tag] = []
        for raw in names:
            name = (raw or "").strip()
            if not name or any(t.name == name for t in tags):
                continue
            stmt = select(Tag).where(Tag.name == name)
            tag = session.execute(stmt).scalar_one_or_none()
            if tag is None:
                try:
                    with session.begin_nested():
                        tag = Tag(name=name)
                        session.add(tag)
                        session.flush()
                except IntegrityError:
                    tag = session.execute(stmt).scalar_one()
            tags.append(tag)
        return tags

    # endregion
