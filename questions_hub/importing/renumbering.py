from __future__ import annotations

import logging
import sys
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import selectinload, sessionmaker

from .entities import Package, Question, Tour
from .indexing import Indexer, NoopIndexer
from .models import NumberingMode, TourType

logger = logging.getLogger(__name__)

WARMUP_TOUR_NUMBER = "0"
SHOOTOUT_TOUR_NUMBER = "П"


class PackageRenumberingService:
    """
    Keeps order indices and display numbers of a package consistent.

    Order indices are the source of truth: the warmup tour is always first,
    the shootout tour last; questions follow block order, then their own
    order index. Display numbers are derived from that order according to
    the package numbering mode. Running it twice changes nothing.

    Persisted changes are pushed to `indexer` so search hits show the new
    numbers. Not safe to run concurrently on the same package.
    """

    def __init__(self, session_factory: Optional[sessionmaker], indexer: Optional[Indexer] = None):
        self.session_factory = session_factory
        self.indexer = indexer or NoopIndexer()

    def renumber_package(self, package_id: int) -> bool:
        with self.session_factory() as session:
            package = session.execute(self._load(package_id)).scalar_one_or_none()
            if package is None:
                return False
            self.renumber_in_memory(package)
            session.commit()
            self._reindex(package)
            logger.info("Renumbered package %s", package_id)
            return True

    def set_tour_type_by_id(self, package_id: int, tour_id: int, new_type: TourType) -> bool:
        with self.session_factory() as session:
            package = session.execute(self._load(package_id)).scalar_one_or_none()
            if package is None or not any(t.id == tour_id for t in package.tours):
                return False
            self.set_tour_type(package, tour_id, new_type)
            session.commit()
            self._reindex(package)
            return True

    def renumber_in_memory(self, package: Package) -> None:
        self._enforce_special_tour_positions(package)
        self._renumber_tours(package)
        self._renumber_questions(package)

    def set_tour_type(self, package: Package, tour_id: int, new_type: TourType) -> None:
        """Change a tour's type; at most one warmup and one shootout tour remain."""
        tour = next((t for t in package.tours if t.id == tour_id), None)
        if tour is None:
            return
        if new_type != TourType.REGULAR:
            for other in package.tours:
                if other is not tour and other.type == new_type:
                    other.type = TourType.REGULAR
        tour.type = new_type
        self.renumber_in_memory(package)

    def _load(self, package_id: int):
        return (
            select(Package)
            .where(Package.id == package_id)
            .options(
                selectinload(Package.tours).selectinload(Tour.blocks),
                selectinload(Package.tours).selectinload(Tour.questions).selectinload(Question.block),
            )
        )

    def _reindex(self, package: Package) -> None:
        questions = [q for tour in sorted(package.tours, key=lambda t: t.order_index) for q in ordered_questions(tour)]
        self.indexer.index_package(package.id, package.title, questions)

    def _enforce_special_tour_positions(self, package: Package) -> None:
        by_position = sorted(package.tours, key=lambda t: t.order_index)
        warmup = next((t for t in by_position if t.type == TourType.WARMUP), None)
        shootout = next((t for t in by_position if t.type == TourType.SHOOTOUT), None)
        for tour in by_position:
            if tour.type != TourType.REGULAR and tour is not warmup and tour is not shootout:
                logger.warning("Tour %s demoted to regular: package already has a %s tour", tour.id, tour.type.value)
                tour.type = TourType.REGULAR

        ordered: List[Tour] = []
        if warmup is not None:
            ordered.append(warmup)
        ordered.extend(t for t in by_position if t.type == TourType.REGULAR)
        if shootout is not None:
            ordered.append(shootout)
        for idx, tour in enumerate(ordered):
            tour.order_index = idx

    def _renumber_tours(self, package: Package) -> None:
        main_number = 1
        for tour in sorted(package.tours, key=lambda t: t.order_index):
            if tour.type == TourType.WARMUP:
                tour.number = WARMUP_TOUR_NUMBER
            elif tour.type == TourType.SHOOTOUT:
                tour.number = SHOOTOUT_TOUR_NUMBER
            else:
                tour.number = str(main_number)
                main_number += 1

    def _renumber_questions(self, package: Package) -> None:
        if package.numbering_mode == NumberingMode.MANUAL:
            for tour in package.tours:
                for idx, question in enumerate(ordered_questions(tour)):
                    question.order_index = idx
            return

        global_number = 1
        for tour in sorted(package.tours, key=lambda t: t.order_index):
            questions = ordered_questions(tour)
            for idx, question in enumerate(questions):
                question.order_index = idx

            if tour.type == TourType.WARMUP or package.numbering_mode == NumberingMode.PER_TOUR:
                for idx, question in enumerate(questions):
                    question.number = str(idx + 1)
            else:
                for question in questions:
                    question.number = str(global_number)
                    global_number += 1


def ordered_questions(tour: Tour) -> List[Question]:
    """Block questions by block order, then questions outside any block."""
    if not tour.blocks:
        return sorted(tour.questions, key=lambda q: q.order_index)

    block_order = {id(block): block.order_index for block in tour.blocks}

    def block_position(question: Question) -> int:
        if question.block is None:
            return sys.maxsize
        return block_order.get(id(question.block), sys.maxsize)

    return sorted(tour.questions, key=lambda q: (block_position(q), q.order_index))
