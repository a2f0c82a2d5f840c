from __future__ import annotations

import logging
import os
import re
import shutil
import threading
import uuid
import zipfile
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import json5
import requests

from .errors import ExtractionError, ImportCancelledError
from .models import (
    BlockDto,
    NumberingMode,
    ParseResult,
    QuestionDto,
    TourDto,
    TourType,
    demote_duplicate_special_tours,
)

logger = logging.getLogger(__name__)

MANIFEST_ENTRY = "package.json"
ASSETS_PREFIX = "assets/"
SUPPORTED_FORMAT_VERSION = "1.0"
MAX_ASSET_DOWNLOAD_BYTES = 20 * 1024 * 1024
DOWNLOAD_TIMEOUT_SECONDS = 30
_CHUNK_SIZE = 81920
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
INVALID_TOURS_MESSAGE = "Некоректна структура package.json: tours має бути списком турів"

CONTENT_TYPE_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "image/svg+xml": ".svg",
    "video/mp4": ".mp4",
    "video/webm": ".webm",
    "audio/mpeg": ".mp3",
    "audio/ogg": ".ogg",
    "audio/wav": ".wav",
}


class _ArchiveAssets:
    """
    Files under the archive's assets/ folder, looked up by base name. A
    referenced file is copied into `assets_dir` under a generated
    `qa_{uuid}{ext}` name, so identically named files from different
    packages never share a media URL. Unreferenced entries are never written.
    """

    def __init__(self, archive: zipfile.ZipFile, assets_dir: Path):
        self.archive = archive
        self.assets_dir = assets_dir
        self.entries: Dict[str, zipfile.ZipInfo] = {}
        self.copied: Dict[str, str] = {}
        for entry in archive.infolist():
            if entry.is_dir() or not entry.filename.lower().startswith(ASSETS_PREFIX):
                continue
            base_name = os.path.basename(entry.filename)
            if base_name:
                self.entries.setdefault(base_name, entry)

    def copy(self, file_name: str) -> Optional[str]:
        base_name = os.path.basename(file_name.strip())
        if base_name in self.copied:
            return self.copied[base_name]
        entry = self.entries.get(base_name)
        if entry is None:
            return None
        target_name = f"qa_{uuid.uuid4().hex}{os.path.splitext(base_name)[1].lower()}"
        with self.archive.open(entry) as src, (self.assets_dir / target_name).open("wb") as dst:
            shutil.copyfileobj(src, dst)
        self.copied[base_name] = target_name
        return target_name


class QhubExtractor:
    """
    Reads a .qhub archive (zip with package.json and an assets/ folder) into
    a ParseResult. The manifest is authoritative, so confidence is always 1.0;
    anything missing or odd is reported through warnings.

    Media references resolve to a file in `assets_dir`: an archive asset
    first, then a download of the remote URL. Remote fetches go through
    `session` so callers can swap the HTTP transport.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: float = DOWNLOAD_TIMEOUT_SECONDS,
        max_download_bytes: int = MAX_ASSET_DOWNLOAD_BYTES,
    ):
        self.session = session or requests.Session()
        self.timeout = timeout
        self.max_download_bytes = max_download_bytes

    def extract(
        self,
        file_path: Path,
        assets_dir: Path,
        cancel_event: Optional[threading.Event] = None,
    ) -> ParseResult:
        assets_dir = Path(assets_dir)
        assets_dir.mkdir(parents=True, exist_ok=True)
        try:
            with zipfile.ZipFile(file_path) as archive:
                manifest = self._read_manifest(archive)
                assets = _ArchiveAssets(archive, assets_dir)
                result = self._map_package(manifest, assets, cancel_event)
        except zipfile.BadZipFile as exc:
            raise ExtractionError("Файл пошкоджений або має невірний формат", str(exc)) from exc

        logger.info(
            "Extracted archive %s: %s tours, %s questions, %s warnings",
            Path(file_path).name,
            len(result.tours),
            result.total_questions,
            len(result.warnings),
        )
        return result

    # region Archive
    def _read_manifest(self, archive: zipfile.ZipFile) -> Dict[str, Any]:
        try:
            raw = archive.read(MANIFEST_ENTRY)
        except KeyError as exc:
            raise ExtractionError("Файл package.json не знайдено в архіві .qhub") from exc
        try:
            manifest = json5.loads(raw.decode("utf-8-sig"))
        except ValueError as exc:
            raise ExtractionError("Не вдалося прочитати package.json", str(exc)) from exc
        if not isinstance(manifest, dict):
            raise ExtractionError("Не вдалося прочитати package.json", "Manifest root is not an object")
        return manifest

    # endregion

    # region Mapping
    def _map_package(
        self,
        manifest: Dict[str, Any],
        assets: _ArchiveAssets,
        cancel_event: Optional[threading.Event],
    ) -> ParseResult:
        warnings: List[str] = []

        format_version = _text(manifest.get("formatVersion"))
        if format_version is None:
            warnings.append("Відсутнє поле formatVersion")
        elif format_version != SUPPORTED_FORMAT_VERSION:
            warnings.append(f"Невідома версія формату: {format_version}. Очікувалося {SUPPORTED_FORMAT_VERSION}")

        title = _text(manifest.get("title"))
        if title is None:
            warnings.append("Назва пакету відсутня")

        raw_tours = manifest.get("tours")
        if raw_tours is not None and not isinstance(raw_tours, list):
            raise ExtractionError(INVALID_TOURS_MESSAGE, f"tours is {type(raw_tours).__name__}")
        if not raw_tours:
            raise ExtractionError("Пакет не містить жодного туру")
        if not all(isinstance(raw_tour, dict) for raw_tour in raw_tours):
            raise ExtractionError(INVALID_TOURS_MESSAGE, "tours contains a non-object entry")

        played_from = _parse_date(manifest.get("playedFrom"), "playedFrom", warnings)
        played_to = _parse_date(manifest.get("playedTo"), "playedTo", warnings)

        tours: List[TourDto] = []
        for idx, raw_tour in enumerate(raw_tours):
            _check_cancelled(cancel_event)
            tours.append(self._map_tour(raw_tour, idx, assets, warnings, cancel_event))
        for tour in demote_duplicate_special_tours(tours):
            warnings.append(f"Тур {tour.number}: повторний тур розминки або перестрілки, позначено як звичайний")

        tour_editors = _distinct(e for tour in tours for e in tour.editors)
        shared_editors = bool(manifest.get("sharedEditors") or False)
        package_editors = _string_list(manifest.get("editors"), "editors", warnings)
        if shared_editors and not package_editors and tour_editors:
            package_editors = tour_editors
            warnings.append("SharedEditors=true, але редактори пакету не вказані. Використано редакторів турів.")

        return ParseResult(
            title=title,
            description=_text(manifest.get("description")),
            preamble=_text(manifest.get("preamble")),
            source_url=_text(manifest.get("sourceUrl")),
            played_from=played_from,
            played_to=played_to,
            editors=[] if shared_editors else tour_editors,
            shared_editors=shared_editors,
            package_editors=package_editors,
            tags=_string_list(manifest.get("tags"), "tags", warnings),
            numbering_mode=_parse_numbering_mode(manifest.get("numberingMode")),
            tours=tours,
            warnings=warnings,
            confidence=1.0,
        )

    def _map_tour(
        self,
        raw: Dict[str, Any],
        index: int,
        assets: _ArchiveAssets,
        warnings: List[str],
        cancel_event: Optional[threading.Event],
    ) -> TourDto:
        number = _text(raw.get("number"))
        if number is None:
            warnings.append(f"Тур {index + 1}: відсутній номер туру")
            number = str(index + 1)

        raw_questions = _object_list(raw.get("questions"), f"Тур {number}: запитання", warnings)
        raw_blocks = _object_list(raw.get("blocks"), f"Тур {number}: блок", warnings)
        if not raw_questions and not raw_blocks:
            warnings.append(f"Тур {number}: не містить запитань")

        tour = TourDto(
            number=number,
            order_index=index,
            type=_parse_tour_type(raw),
            editors=_string_list(raw.get("editors"), f"Тур {number}: editors", warnings),
            preamble=_text(raw.get("preamble")),
            comment=_text(raw.get("comment")),
        )

        for block_idx, raw_block in enumerate(raw_blocks):
            context = f"{number}/блок {block_idx + 1}"
            block_questions = _object_list(raw_block.get("questions"), f"Тур {context}: запитання", warnings)
            if not block_questions:
                warnings.append(f"Тур {number}, блок {block_idx + 1}: не містить запитань")
            block = BlockDto(
                name=_text(raw_block.get("name")),
                order_index=block_idx,
                editors=_string_list(raw_block.get("editors"), f"Тур {context}: editors", warnings),
                preamble=_text(raw_block.get("preamble")),
            )
            for q_idx, raw_question in enumerate(block_questions):
                _check_cancelled(cancel_event)
                block.questions.append(self._map_question(raw_question, q_idx, context, assets, warnings))
            tour.blocks.append(block)

        for q_idx, raw_question in enumerate(raw_questions):
            _check_cancelled(cancel_event)
            tour.questions.append(self._map_question(raw_question, q_idx, number, assets, warnings))
        return tour

    def _map_question(
        self,
        raw: Dict[str, Any],
        index: int,
        context: str,
        assets: _ArchiveAssets,
        warnings: List[str],
    ) -> QuestionDto:
        number = _text(raw.get("number"))
        label = f"Тур {context}, запитання {number or index + 1}"
        if number is None:
            warnings.append(f"{label}: відсутній номер запитання")
        text = _text(raw.get("text"))
        if text is None:
            warnings.append(f"{label}: текст запитання відсутній")
        answer = _text(raw.get("answer"))
        if answer is None:
            warnings.append(f"{label}: відповідь відсутня")

        handout_asset = self._resolve_asset(
            raw.get("handoutAssetFileName"), raw.get("handoutAssetUrl"), assets, label, "роздатка", warnings
        )
        comment_asset = self._resolve_asset(
            raw.get("commentAssetFileName"), raw.get("commentAssetUrl"), assets, label, "коментар", warnings
        )

        return QuestionDto(
            number=number or str(index + 1),
            order_index=index,
            text=text or "",
            answer=answer or "",
            accepted_answers=_text(raw.get("acceptedAnswers")),
            rejected_answers=_text(raw.get("rejectedAnswers")),
            comment=_text(raw.get("comment")),
            source=_text(raw.get("source")),
            authors=_string_list(raw.get("authors"), f"{label}: authors", warnings),
            host_instructions=_text(raw.get("hostInstructions")),
            handout_text=_text(raw.get("handoutText")),
            handout_asset_file_name=handout_asset,
            comment_asset_file_name=comment_asset,
        )

    # endregion

    # region Assets
    def _resolve_asset(
        self,
        local_file_name: Any,
        url: Any,
        assets: _ArchiveAssets,
        label: str,
        asset_type: str,
        warnings: List[str],
    ) -> Optional[str]:
        """Return the asset's file name inside the job assets folder, or None if it could not be resolved."""
        local_file_name = _text(local_file_name)
        if local_file_name is not None:
            copied = assets.copy(local_file_name)
            if copied is not None:
                return copied
            warnings.append(f"{label}: файл {asset_type} '{local_file_name}' не знайдено в архіві")

        url = _text(url)
        if url is not None:
            return self._download_asset(url.strip(), assets.assets_dir, label, asset_type, warnings)
        return None

    def _download_asset(
        self,
        url: str,
        assets_dir: Path,
        label: str,
        asset_type: str,
        warnings: List[str],
    ) -> Optional[str]:
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            warnings.append(f"{label}: некоректне посилання на {asset_type}: {url}")
            return None

        target: Optional[Path] = None
        try:
            with self.session.get(url, stream=True, timeout=self.timeout) as response:
                if response.status_code >= 400:
                    warnings.append(
                        f"{label}: не вдалося завантажити {asset_type} ({response.status_code}): {url}"
                    )
                    return None

                declared = response.headers.get("Content-Length")
                if declared and declared.isdigit() and int(declared) > self.max_download_bytes:
                    size_mb = int(declared) // 1024 // 1024
                    warnings.append(f"{label}: файл {asset_type} завеликий ({size_mb} МБ): {url}")
                    return None

                content_type = (response.headers.get("Content-Type") or "").split(";")[0].strip().lower()
                file_name = f"dl_{uuid.uuid4().hex}{extension_for(url, content_type)}"
                target = assets_dir / file_name
                total = 0
                with target.open("wb") as fh:
                    for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
                        if not chunk:
                            continue
                        total += len(chunk)
                        if total > self.max_download_bytes:
                            break
                        fh.write(chunk)
                if total > self.max_download_bytes:
                    target.unlink(missing_ok=True)
                    warnings.append(f"{label}: файл {asset_type} перевищив ліміт 20 МБ: {url}")
                    return None
        except requests.Timeout:
            _discard(target)
            warnings.append(f"{label}: таймаут завантаження {asset_type}: {url}")
            return None
        except requests.RequestException as exc:
            _discard(target)
            logger.warning("Failed to download %s: %s", url, exc)
            warnings.append(f"{label}: помилка завантаження {asset_type}: {url}")
            return None

        logger.debug("Downloaded %s -> %s (%s bytes)", url, file_name, total)
        return file_name

    # endregion


def extension_for(url: str, content_type: Optional[str]) -> str:
    ext = os.path.splitext(urlparse(url).path)[1].lower()
    if ext and len(ext) <= 5:
        return ext
    return CONTENT_TYPE_EXTENSIONS.get(content_type or "", ".bin")


def _discard(path: Optional[Path]) -> None:
    if path is not None:
        path.unlink(missing_ok=True)


def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise ImportCancelledError()


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value)
    return value if value.strip() else None


def _string_list(value: Any, field_name: str, warnings: List[str]) -> List[str]:
    """A list of non-blank strings; a single string counts as a one-item list."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if not isinstance(value, list):
        warnings.append(f"{field_name}: очікувався список рядків, значення пропущено")
        return []
    items: List[str] = []
    for item in value:
        if isinstance(item, str):
            if item.strip():
                items.append(item.strip())
        else:
            warnings.append(f"{field_name}: некоректне значення {item!r} пропущено")
    return items


def _object_list(value: Any, context: str, warnings: List[str]) -> List[Dict[str, Any]]:
    if value is None:
        return []
    if not isinstance(value, list):
        warnings.append(f"{context}: очікувався список, значення пропущено")
        return []
    objects = []
    for idx, item in enumerate(value):
        if isinstance(item, dict):
            objects.append(item)
        else:
            warnings.append(f"{context} {idx + 1}: некоректний запис пропущено")
    return objects


def _distinct(values) -> List[str]:
    seen: List[str] = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


def _parse_date(value: Any, field_name: str, warnings: List[str]) -> Optional[date]:
    text = _text(value)
    if text is None:
        return None
    if _ISO_DATE.match(text):
        try:
            return datetime.strptime(text, "%Y-%m-%d").date()
        except ValueError:
            pass
    warnings.append(f"Некоректний формат дати {field_name}: '{text}'. Очікувався YYYY-MM-DD.")
    return None


def _parse_numbering_mode(value: Any) -> NumberingMode:
    for mode in NumberingMode:
        if value == mode.value:
            return mode
    return NumberingMode.GLOBAL


def _parse_tour_type(raw: Dict[str, Any]) -> TourType:
    raw_type = raw.get("type")
    if isinstance(raw_type, str) and raw_type.lower() in {t.value for t in TourType}:
        return TourType(raw_type.lower())
    return TourType.WARMUP if raw.get("isWarmup") else TourType.REGULAR
