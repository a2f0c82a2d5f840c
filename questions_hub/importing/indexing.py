from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, List, Protocol

from whoosh import index
from whoosh.fields import ID, NUMERIC, STORED, TEXT, Schema
from whoosh.qparser import FuzzyTermPlugin, MultifieldParser

from .entities import Question


class Indexer(Protocol):
    def index_package(self, package_id: int, package_title: str, questions: Iterable[Question]) -> None:
        ...

    def delete_package(self, package_id: int) -> None:
        ...


class NoopIndexer:
    """
    Default indexer stub. Keeps the pipeline wired without a search index.
    """

    def index_package(self, package_id: int, package_title: str, questions: Iterable[Question]) -> None:
        return None

    def delete_package(self, package_id: int) -> None:
        return None


class WhooshQuestionIndexer:
    """
    File-system backed Whoosh index of imported questions. Re-indexing a
    package first deletes its existing documents, so it is idempotent.
    """

    def __init__(self, index_dir: Path):
        self.index_dir = Path(index_dir)
        self.index_dir.mkdir(parents=True, exist_ok=True)
        self.schema = Schema(
            package_id=ID(stored=True),
            question_id=ID(stored=True, unique=True),
            package_title=STORED(),
            number=STORED(),
            order_index=NUMERIC(stored=True, sortable=True),
            text=TEXT(stored=True),
            answer=TEXT(stored=True),
            comment=TEXT(stored=True),
        )
        if index.exists_in(str(self.index_dir)):
            self.ix = index.open_dir(str(self.index_dir))
        else:
            self.ix = index.create_in(str(self.index_dir), self.schema)

    def index_package(self, package_id: int, package_title: str, questions: Iterable[Question]) -> None:
        writer = self.ix.writer()
        writer.delete_by_term("package_id", str(package_id))
        for question in questions:
            writer.add_document(
                package_id=str(package_id),
                question_id=str(question.id),
                package_title=package_title or "",
                number=question.number,
                order_index=question.order_index or 0,
                text=question.text or "",
                answer=question.answer or "",
                comment=question.comment or "",
            )
        writer.commit()

    def delete_package(self, package_id: int) -> None:
        writer = self.ix.writer()
        writer.delete_by_term("package_id", str(package_id))
        writer.commit()

    def search(self, query_str: str, limit: int = 10) -> List[Dict]:
        """
        Return a list of plain dicts so callers are safe after the searcher closes.
        `term~` in the query enables fuzzy matching for that term.
        """
        qp = MultifieldParser(["text", "answer", "comment"], schema=self.schema)
        qp.add_plugin(FuzzyTermPlugin())
        q = qp.parse(query_str)
        with self.ix.searcher() as searcher:
            results = searcher.search(q, limit=limit)
            hits = []
            for hit in results:
                fields = hit.fields()
                hits.append(
                    {
                        "package_id": int(fields["package_id"]),
                        "question_id": int(fields["question_id"]),
                        "package_title": fields.get("package_title"),
                        "number": fields.get("number"),
                        "text": fields.get("text"),
                        "answer": fields.get("answer"),
                        "score": hit.score,
                    }
                )
            return hits
