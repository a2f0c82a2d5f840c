import pytest
from sqlalchemy import func, select

from questions_hub.importing.entities import Author, Package, Question, Tag, create_session_factory
from questions_hub.importing.errors import DatabaseImportError
from questions_hub.importing.importer import PackageDbImporter, parse_author_name, truncate
from questions_hub.importing.models import (
    BlockDto,
    NumberingMode,
    PackageStatus,
    ParseResult,
    QuestionDto,
    TourDto,
    TourType,
)
from questions_hub.importing.storage import LocalImportStorage, StoragePaths


class RecordingIndexer:
    def __init__(self):
        self.calls = []

    def index_package(self, package_id, package_title, questions):
        self.calls.append((package_id, package_title, [q.id for q in questions]))

    def delete_package(self, package_id):
        pass


@pytest.fixture
def session_factory(tmp_path):
    return create_session_factory(f"sqlite+pysqlite:///{tmp_path / 'test.db'}")


@pytest.fixture
def storage(tmp_path):
    return LocalImportStorage(StoragePaths(tmp_path / "data"))


def sample_result():
    return ParseResult(
        title="Кубок Одеси",
        preamble="Вступ",
        shared_editors=True,
        package_editors=["Олена Сокол", "Олена Сокол (Одеса)"],
        tags=["ЧГК", "  ", "ЧГК", "тренування"],
        numbering_mode=NumberingMode.GLOBAL,
        tours=[
            TourDto(
                number="0",
                type=TourType.WARMUP,
                questions=[QuestionDto(number="1", text="Розминка", answer="Так")],
            ),
            TourDto(
                number="1",
                order_index=1,
                editors=["Ігор Голуб"],
                blocks=[
                    BlockDto(
                        name="А",
                        editors=["Олег Петрук"],
                        questions=[
                            QuestionDto(
                                number="1",
                                text="Що на фото?",
                                answer="Кіт",
                                authors=["Олег Петрук (Київ)", "Просто"],
                                handout_asset_file_name="pic.png",
                                handout_asset_url="https://cdn.example/pic.png",
                            ),
                            QuestionDto(
                                number="2",
                                text="Друге",
                                answer="x" * 1500,
                                comment_asset_file_name="absent.png",
                                comment_asset_url="https://cdn.example/absent.png",
                            ),
                        ],
                    ),
                    BlockDto(name="Б", order_index=1, questions=[QuestionDto(number="3", text="Третє", answer="у")]),
                ],
            ),
        ],
    )


def test_import_materializes_package_graph(session_factory, storage, tmp_path):
    assets_dir = tmp_path / "assets"
    assets_dir.mkdir()
    (assets_dir / "pic.png").write_bytes(b"PNG")
    indexer = RecordingIndexer()
    importer = PackageDbImporter(session_factory, storage, indexer=indexer)

    package_id = importer.import_package(sample_result(), "owner-1", assets_dir)

    with session_factory() as session:
        package = session.get(Package, package_id)
        assert package.title == "Кубок Одеси"
        assert package.status == PackageStatus.DRAFT
        assert package.owner_id == "owner-1"
        assert package.total_questions == 4
        assert [e.full_name for e in package.editors] == ["Олена Сокол"]
        assert {t.name for t in package.tags} == {"ЧГК", "тренування"}

        warmup, regular = package.tours
        assert warmup.type == TourType.WARMUP
        assert [e.full_name for e in regular.editors] == ["Ігор Голуб"]
        assert [b.name for b in regular.blocks] == ["А", "Б"]
        assert [b.full_name for b in regular.blocks[0].editors] == ["Олег Петрук"]

        questions = regular.questions
        assert [q.order_index for q in questions] == [0, 1, 2]
        assert [q.block.name for q in questions] == ["А", "А", "Б"]

        first, second, _ = questions
        assert first.handout_url == "/media/pic.png"
        assert [a.full_name for a in first.authors] == ["Олег Петрук"]
        assert second.comment_attachment_url == "https://cdn.example/absent.png"
        assert len(second.answer) == 1000

    assert (tmp_path / "data" / "media" / "handouts" / "pic.png").read_bytes() == b"PNG"
    assert indexer.calls[0][0] == package_id
    assert len(indexer.calls[0][2]) == 4


def test_authors_and_tags_are_reused(session_factory, storage, tmp_path):
    importer = PackageDbImporter(session_factory, storage)

    importer.import_package(sample_result(), "owner-1", tmp_path)
    importer.import_package(sample_result(), "owner-2", tmp_path)

    with session_factory() as session:
        assert session.execute(select(func.count()).select_from(Package)).scalar_one() == 2
        authors = session.execute(select(Author)).scalars().all()
        assert sorted(a.full_name for a in authors) == ["Ігор Голуб", "Олег Петрук", "Олена Сокол"]
        assert session.execute(select(func.count()).select_from(Tag)).scalar_one() == 2


def test_header_editors_apply_to_tours_without_editors(session_factory, storage, tmp_path):
    result = ParseResult(
        title="Пакет",
        editors=["Олена Сокол"],
        tours=[TourDto(number="1", questions=[QuestionDto(number="1", text="т", answer="в")])],
    )

    package_id = PackageDbImporter(session_factory, storage).import_package(result, "owner", tmp_path)

    with session_factory() as session:
        package = session.get(Package, package_id)
        assert package.editors == []
        assert [e.full_name for e in package.tours[0].editors] == ["Олена Сокол"]


def test_failed_import_leaves_nothing_behind(session_factory, tmp_path):
    class BrokenStorage:
        def publish_media(self, source):
            raise RuntimeError("disk is gone")

    importer = PackageDbImporter(session_factory, BrokenStorage())

    with pytest.raises(DatabaseImportError) as exc_info:
        importer.import_package(sample_result(), "owner", tmp_path)
    assert exc_info.value.user_message == "Не вдалося зберегти пакет в базу даних"
    assert not exc_info.value.is_retriable

    with session_factory() as session:
        assert session.execute(select(func.count()).select_from(Package)).scalar_one() == 0
        assert session.execute(select(func.count()).select_from(Question)).scalar_one() == 0
        assert session.execute(select(func.count()).select_from(Author)).scalar_one() == 0


def test_default_title(session_factory, storage, tmp_path):
    result = ParseResult(tours=[TourDto(number="1", questions=[QuestionDto(number="1", text="т", answer="в")])])

    package_id = PackageDbImporter(session_factory, storage).import_package(result, "owner", tmp_path)

    with session_factory() as session:
        assert session.get(Package, package_id).title == "Імпортований пакет"


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("Олег Петрук", ("Олег", "Петрук")),
        ("Олег Петрук (Київ).", ("Олег", "Петрук")),
        ("Просто", (None, None)),
        ("Олег Петрук Молодший", (None, None)),
        ("Команда 42 Київ", (None, None)),
        ("Хто: Він", (None, None)),
    ],
)
def test_parse_author_name(raw, expected):
    assert parse_author_name(raw) == expected


def test_truncate():
    assert truncate(None) is None
    assert truncate("abc", 2) == "ab"
    assert truncate("abc") == "abc"


def test_direct_tour_questions_follow_block_questions(session_factory, storage, tmp_path):
    result = ParseResult(
        title="Пакет",
        tours=[
            TourDto(
                number="1",
                questions=[QuestionDto(number="9", text="поза блоком", answer="в")],
                blocks=[
                    BlockDto(name="А", questions=[QuestionDto(number="4", text="а-1", answer="в")]),
                    BlockDto(name="Б", order_index=1, questions=[QuestionDto(number="2", text="б-1", answer="в")]),
                ],
            )
        ],
    )

    package_id = PackageDbImporter(session_factory, storage).import_package(result, "owner", tmp_path)

    with session_factory() as session:
        questions = session.get(Package, package_id).tours[0].questions
        assert [(q.text, q.number, q.order_index) for q in questions] == [
            ("а-1", "1", 0),
            ("б-1", "2", 1),
            ("поза блоком", "3", 2),
        ]
        assert questions[2].block is None
