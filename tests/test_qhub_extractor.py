import threading
import zipfile
from datetime import date

import pytest
import requests

from questions_hub.importing.errors import ExtractionError, ImportCancelledError
from questions_hub.importing.models import NumberingMode, TourType
from questions_hub.importing.qhub_extractor import QhubExtractor, extension_for

MANIFEST = """
{
  // exported by the package editor
  "formatVersion": "1.0",
  "title": "Кубок Одеси",
  "playedFrom": "2024-05-01",
  "playedTo": "01.05.2024",
  "numberingMode": "PerTour",
  "sharedEditors": true,
  "tags": ["ЧГК", "тренування",],
  "tours": [
    {
      "number": "0",
      "isWarmup": true,
      "editors": ["Олена Сокол"],
      "questions": [
        {
          "number": "1", "text": "Розминка", "answer": "Так",
          "handoutAssetFileName": "pic.png",
          "handoutAssetUrl": "https://cdn.example/pic.png",
        },
      ],
    },
    {
      "number": "1",
      "editors": ["Ігор Голуб"],
      "blocks": [
        {
          "name": "Блок А",
          "editors": ["Олег Петрук"],
          "questions": [
            {"number": "1", "text": "Q1", "answer": "A1", "commentAssetUrl": "https://cdn.example/image"},
            {"number": "2", "text": "Q2", "answer": "A2", "handoutAssetUrl": "https://cdn.example/missing.png"},
          ],
        },
        {"name": "Блок Б", "questions": []},
      ],
    },
    {
      "questions": [
        {
          "number": "1", "text": "Q", "answer": "A",
          "handoutAssetUrl": "https://slow.example/a.jpg",
          "commentAssetFileName": "absent.png",
        },
      ],
    },
  ],
}
"""


class FakeResponse:
    def __init__(self, status_code=200, body=b"", headers=None):
        self.status_code = status_code
        self.body = body
        self.headers = headers or {}

    def iter_content(self, chunk_size=1):
        for start in range(0, len(self.body), chunk_size):
            yield self.body[start : start + chunk_size]

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False


class FakeSession:
    def __init__(self, responses):
        self.responses = responses
        self.calls = []

    def get(self, url, stream=False, timeout=None):
        self.calls.append((url, stream, timeout))
        outcome = self.responses.get(url, FakeResponse(status_code=404))
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def build_archive(path, manifest=MANIFEST, assets=None):
    with zipfile.ZipFile(path, "w") as archive:
        if manifest is not None:
            archive.writestr("package.json", manifest)
        for name, data in (assets if assets is not None else {"assets/pic.png": b"PNGDATA"}).items():
            archive.writestr(name, data)
    return path


def default_session():
    return FakeSession(
        {
            "https://cdn.example/image": FakeResponse(body=b"JPEGDATA", headers={"Content-Type": "image/jpeg"}),
            "https://cdn.example/missing.png": FakeResponse(status_code=404),
            "https://slow.example/a.jpg": requests.Timeout("read timed out"),
        }
    )


def test_full_archive_mapping(tmp_path):
    archive = build_archive(tmp_path / "package.qhub")
    assets_dir = tmp_path / "assets"
    session = default_session()

    result = QhubExtractor(session=session, timeout=5).extract(archive, assets_dir)

    assert result.title == "Кубок Одеси"
    assert result.confidence == 1.0
    assert result.played_from == date(2024, 5, 1)
    assert result.played_to is None
    assert result.numbering_mode == NumberingMode.PER_TOUR
    assert result.tags == ["ЧГК", "тренування"]
    assert result.shared_editors
    assert result.package_editors == ["Олена Сокол", "Ігор Голуб"]
    assert result.total_questions == 4

    warmup, regular, unnamed = result.tours
    assert warmup.type == TourType.WARMUP
    assert unnamed.number == "3"
    assert [b.name for b in regular.blocks] == ["Блок А", "Блок Б"]
    assert regular.blocks[0].editors == ["Олег Петрук"]

    # Local archive asset wins over the remote URL and is copied under a generated name.
    local = warmup.questions[0].handout_asset_file_name
    assert local.startswith("qa_") and local.endswith(".png")
    assert (assets_dir / local).read_bytes() == b"PNGDATA"
    assert not (assets_dir / "pic.png").exists()
    assert all(call[0] != "https://cdn.example/pic.png" for call in session.calls)

    downloaded = regular.blocks[0].questions[0].comment_asset_file_name
    assert downloaded.startswith("dl_") and downloaded.endswith(".jpg")
    assert (assets_dir / downloaded).read_bytes() == b"JPEGDATA"
    assert all(call[1] is True and call[2] == 5 for call in session.calls)

    assert regular.blocks[0].questions[1].handout_asset_file_name is None
    assert unnamed.questions[0].handout_asset_file_name is None
    assert unnamed.questions[0].comment_asset_file_name is None

    warnings = "\n".join(result.warnings)
    assert "Некоректний формат дати playedTo" in warnings
    assert "SharedEditors=true" in warnings
    assert "Тур 1, блок 2: не містить запитань" in warnings
    assert "Тур 3: відсутній номер туру" in warnings
    assert "(404): https://cdn.example/missing.png" in warnings
    assert "таймаут завантаження" in warnings
    assert "'absent.png' не знайдено в архіві" in warnings


def test_missing_format_version_and_answer_are_warnings(tmp_path):
    manifest = '{"title": "Пакет", "tours": [{"number": "1", "questions": [{"number": "1", "text": "Питання"}]}]}'
    archive = build_archive(tmp_path / "package.qhub", manifest=manifest, assets={})

    result = QhubExtractor(session=FakeSession({})).extract(archive, tmp_path / "assets")

    assert "Відсутнє поле formatVersion" in result.warnings
    assert "Тур 1, запитання 1: відповідь відсутня" in result.warnings
    assert result.confidence == 1.0
    assert result.tours[0].questions[0].answer == ""


def test_unknown_format_version_and_numbering_mode(tmp_path):
    manifest = '{"formatVersion": "2.0", "title": "Т", "numberingMode": "Odd", "tours": [{"number": "1", "questions": [{"number": "1", "text": "т", "answer": "в"}]}]}'
    archive = build_archive(tmp_path / "package.qhub", manifest=manifest, assets={})

    result = QhubExtractor(session=FakeSession({})).extract(archive, tmp_path / "assets")

    assert result.numbering_mode == NumberingMode.GLOBAL
    assert any(w.startswith("Невідома версія формату: 2.0") for w in result.warnings)


def test_missing_manifest_is_fatal(tmp_path):
    archive = build_archive(tmp_path / "package.qhub", manifest=None)

    with pytest.raises(ExtractionError):
        QhubExtractor(session=FakeSession({})).extract(archive, tmp_path / "assets")


def test_archive_without_tours_is_fatal(tmp_path):
    archive = build_archive(tmp_path / "package.qhub", manifest='{"title": "Порожній", "tours": []}')

    with pytest.raises(ExtractionError) as exc_info:
        QhubExtractor(session=FakeSession({})).extract(archive, tmp_path / "assets")
    assert exc_info.value.user_message == "Пакет не містить жодного туру"


def test_not_a_zip_is_fatal(tmp_path):
    broken = tmp_path / "broken.qhub"
    broken.write_bytes(b"plain text")

    with pytest.raises(ExtractionError):
        QhubExtractor(session=FakeSession({})).extract(broken, tmp_path / "assets")


def test_oversized_download_is_discarded(tmp_path):
    manifest = (
        '{"formatVersion": "1.0", "title": "Т", "tours": [{"number": "1", "questions": '
        '[{"number": "1", "text": "т", "answer": "в", "handoutAssetUrl": "https://cdn.example/big.png"}]}]}'
    )
    archive = build_archive(tmp_path / "package.qhub", manifest=manifest, assets={})
    session = FakeSession({"https://cdn.example/big.png": FakeResponse(body=b"x" * 64)})
    assets_dir = tmp_path / "assets"

    result = QhubExtractor(session=session, max_download_bytes=16).extract(archive, assets_dir)

    assert result.tours[0].questions[0].handout_asset_file_name is None
    assert list(assets_dir.iterdir()) == []
    assert any("перевищив ліміт" in w for w in result.warnings)


def test_cancellation_between_tours(tmp_path):
    archive = build_archive(tmp_path / "package.qhub")
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(ImportCancelledError):
        QhubExtractor(session=default_session()).extract(archive, tmp_path / "assets", cancel_event=cancel)


def test_extension_for():
    assert extension_for("https://a.example/x/photo.PNG", "image/jpeg") == ".png"
    assert extension_for("https://a.example/x/photo", "image/webp") == ".webp"
    assert extension_for("https://a.example/x/photo", None) == ".bin"


def test_only_referenced_assets_are_copied(tmp_path):
    manifest = (
        '{"formatVersion": "1.0", "title": "Т", "tours": [{"number": "1", "questions": ['
        '{"number": "1", "text": "т", "answer": "в", "handoutAssetFileName": "pic.png", "commentAssetFileName": "pic.png"},'
        '{"number": "2", "text": "т", "answer": "в", "handoutAssetFileName": "assets/nested/pic.png"}]}]}'
    )
    assets = {"assets/pic.png": b"PNG", "assets/unused.png": b"UNUSED"}
    archive = build_archive(tmp_path / "package.qhub", manifest=manifest, assets=assets)
    assets_dir = tmp_path / "assets"

    result = QhubExtractor(session=FakeSession({})).extract(archive, assets_dir)

    first, second = result.tours[0].questions
    assert first.handout_asset_file_name == first.comment_asset_file_name
    assert second.handout_asset_file_name == first.handout_asset_file_name
    assert [p.name for p in assets_dir.iterdir()] == [first.handout_asset_file_name]


def test_same_asset_name_in_two_archives_gets_distinct_files(tmp_path):
    manifest = (
        '{"formatVersion": "1.0", "title": "Т", "tours": [{"number": "1", "questions": '
        '[{"number": "1", "text": "т", "answer": "в", "handoutAssetFileName": "pic.png"}]}]}'
    )
    first = build_archive(tmp_path / "first.qhub", manifest=manifest, assets={"assets/pic.png": b"FIRST"})
    second = build_archive(tmp_path / "second.qhub", manifest=manifest, assets={"assets/pic.png": b"SECOND"})
    extractor = QhubExtractor(session=FakeSession({}))

    name_a = extractor.extract(first, tmp_path / "a").tours[0].questions[0].handout_asset_file_name
    name_b = extractor.extract(second, tmp_path / "b").tours[0].questions[0].handout_asset_file_name

    assert name_a != name_b
    assert (tmp_path / "a" / name_a).read_bytes() == b"FIRST"
    assert (tmp_path / "b" / name_b).read_bytes() == b"SECOND"


def test_extra_warmup_and_shootout_tours_become_regular(tmp_path):
    manifest = """{
      "title": "Т",
      "tours": [
        {"number": "0", "isWarmup": true, "questions": [{"number": "1", "text": "т", "answer": "в"}]},
        {"number": "1", "type": "shootout", "questions": [{"number": "1", "text": "т", "answer": "в"}]},
        {"number": "2", "isWarmup": true, "questions": [{"number": "2", "text": "т", "answer": "в"}]},
        {"number": "3", "type": "shootout", "questions": [{"number": "3", "text": "т", "answer": "в"}]},
      ],
    }"""
    archive = build_archive(tmp_path / "package.qhub", manifest=manifest, assets={})

    result = QhubExtractor(session=FakeSession({})).extract(archive, tmp_path / "assets")

    assert [t.type for t in result.tours] == [
        TourType.WARMUP,
        TourType.SHOOTOUT,
        TourType.REGULAR,
        TourType.REGULAR,
    ]
    assert "Тур 2: повторний тур розминки або перестрілки, позначено як звичайний" in result.warnings
    assert "Тур 3: повторний тур розминки або перестрілки, позначено як звичайний" in result.warnings


def test_scalar_strings_and_wrong_types_in_lists(tmp_path):
    manifest = """{
      "title": "Т",
      "tags": "ЧГК",
      "editors": 42,
      "tours": [
        {
          "number": "1",
          "editors": "Олена Сокол",
          "blocks": "not a list",
          "questions": [
            "not a question",
            {"number": "1", "text": "т", "answer": "в", "authors": ["Олег Петрук", 7, " "]},
          ],
        },
      ],
    }"""
    archive = build_archive(tmp_path / "package.qhub", manifest=manifest, assets={})

    result = QhubExtractor(session=FakeSession({})).extract(archive, tmp_path / "assets")

    assert result.tags == ["ЧГК"]
    assert result.package_editors == []
    tour = result.tours[0]
    assert tour.editors == ["Олена Сокол"]
    assert tour.blocks == []
    assert [q.number for q in tour.questions] == ["1"]
    assert tour.questions[0].authors == ["Олег Петрук"]

    warnings = "\n".join(result.warnings)
    assert "editors: очікувався список рядків" in warnings
    assert "Тур 1: блок: очікувався список" in warnings
    assert "Тур 1: запитання 1: некоректний запис пропущено" in warnings
    assert "authors: некоректне значення 7 пропущено" in warnings


@pytest.mark.parametrize("tours", ['{"number": "1"}', '"Тур 1"', '["Тур 1"]', "[null]"])
def test_malformed_tours_are_fatal(tmp_path, tours):
    archive = build_archive(tmp_path / "package.qhub", manifest=f'{{"title": "Т", "tours": {tours}}}', assets={})

    with pytest.raises(ExtractionError) as exc_info:
        QhubExtractor(session=FakeSession({})).extract(archive, tmp_path / "assets")
    assert exc_info.value.user_message == "Некоректна структура package.json: tours має бути списком турів"
