from __future__ import annotations

import logging
import os
import threading
import zipfile
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from docx import Document
from docx.opc.exceptions import PackageNotFoundError
from docx.oxml.ns import qn
from docx.table import Table
from docx.text.paragraph import Paragraph

from .errors import ExtractionError, ImportCancelledError
from .models import AssetReference, DocBlock, ExtractionResult

logger = logging.getLogger(__name__)

CORRUPTED_FILE_MESSAGE = "Файл пошкоджений або має невірний формат"
EMPTY_DOCUMENT_MESSAGE = "Документ порожній або пошкоджений"

_ROMAN_PAIRS = (
    (1000, "m"), (900, "cm"), (500, "d"), (400, "cd"), (100, "c"), (90, "xc"),
    (50, "l"), (40, "xl"), (10, "x"), (9, "ix"), (5, "v"), (4, "iv"), (1, "i"),
)


def _to_roman(value: int) -> str:
    out = []
    for number, letters in _ROMAN_PAIRS:
        while value >= number:
            out.append(letters)
            value -= number
    return "".join(out)


def _to_letter(value: int) -> str:
    letters = ""
    while value > 0:
        value, rem = divmod(value - 1, 26)
        letters = chr(ord("a") + rem) + letters
    return letters


def format_list_number(value: int, num_fmt: str) -> Optional[str]:
    if num_fmt == "decimal":
        return str(value)
    if num_fmt == "lowerLetter":
        return _to_letter(value)
    if num_fmt == "upperLetter":
        return _to_letter(value).upper()
    if num_fmt == "lowerRoman":
        return _to_roman(value)
    if num_fmt == "upperRoman":
        return _to_roman(value).upper()
    return None


class _ListNumbering:
    """
    Renders Word automatic numbering back into text. Counters are kept per
    numbering instance and level; opening a level resets deeper ones.
    """

    def __init__(self, document):
        try:
            self.numbering = document.part.numbering_part.element
        except (KeyError, NotImplementedError):
            self.numbering = None
        self.counters: Dict[Tuple[str, int], int] = {}

    def label_for(self, paragraph: Paragraph) -> Optional[str]:
        if self.numbering is None:
            return None
        num_pr = self._num_pr(paragraph)
        if num_pr is None or num_pr.numId is None:
            return None
        num_id = str(num_pr.numId.val)
        ilvl = num_pr.ilvl.val if num_pr.ilvl is not None else 0

        level = self._level(num_id, ilvl)
        if level is None:
            return None
        num_fmt, lvl_text, start = level
        if format_list_number(1, num_fmt) is None:
            return None

        key = (num_id, ilvl)
        self.counters[key] = self.counters.get(key, start - 1) + 1
        for other in [k for k in self.counters if k[0] == num_id and k[1] > ilvl]:
            del self.counters[other]

        label = lvl_text
        for depth in range(ilvl + 1):
            placeholder = f"%{depth + 1}"
            if placeholder not in label:
                continue
            depth_level = self._level(num_id, depth)
            depth_fmt = depth_level[0] if depth_level else "decimal"
            value = self.counters.get((num_id, depth), 1)
            label = label.replace(placeholder, format_list_number(value, depth_fmt) or str(value))
        return label

    def _num_pr(self, paragraph: Paragraph):
        p_pr = paragraph._p.pPr
        if p_pr is not None and p_pr.numPr is not None:
            return p_pr.numPr
        # "List Number" and similar styles carry the numbering themselves.
        style = paragraph.style
        while style is not None:
            style_p_pr = style.element.pPr
            if style_p_pr is not None and style_p_pr.numPr is not None:
                return style_p_pr.numPr
            style = style.base_style
        return None

    def _level(self, num_id: str, ilvl: int) -> Optional[Tuple[str, str, int]]:
        abstract_ids = self.numbering.xpath(f'./w:num[@w:numId="{num_id}"]/w:abstractNumId/@w:val')
        if not abstract_ids:
            return None
        lvl_path = f'./w:abstractNum[@w:abstractNumId="{abstract_ids[0]}"]/w:lvl[@w:ilvl="{ilvl}"]'
        num_fmt = self.numbering.xpath(f"{lvl_path}/w:numFmt/@w:val")
        lvl_text = self.numbering.xpath(f"{lvl_path}/w:lvlText/@w:val")
        start = self.numbering.xpath(f"{lvl_path}/w:start/@w:val")
        if not num_fmt or not lvl_text:
            return None
        return num_fmt[0], lvl_text[0], int(start[0]) if start else 1


class DocxExtractor:
    """
    Reads a .docx file into an ordered list of DocBlocks. Paragraphs and
    table rows are visited in body order; embedded images are written to
    `assets_dir` and attached to the block they appear in.
    """

    def extract(
        self,
        file_path: Path,
        assets_dir: Path,
        job_id: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> ExtractionResult:
        file_path = Path(file_path)
        assets_dir = Path(assets_dir)
        try:
            document = Document(str(file_path))
        except (PackageNotFoundError, zipfile.BadZipFile, KeyError, ValueError) as exc:
            raise ExtractionError(CORRUPTED_FILE_MESSAGE, f"Cannot open {file_path.name}: {exc}") from exc

        body = document.element.body
        if body is None:
            raise ExtractionError(EMPTY_DOCUMENT_MESSAGE, f"{file_path.name} has no body element")

        assets_dir.mkdir(parents=True, exist_ok=True)
        numbering = _ListNumbering(document)
        blocks: List[DocBlock] = []
        assets: List[AssetReference] = []
        warnings: List[str] = []
        image_counter = 0

        for child in body.iterchildren():
            if cancel_event is not None and cancel_event.is_set():
                raise ImportCancelledError()

            if child.tag == qn("w:p"):
                paragraph = Paragraph(child, document)
                block_assets: List[AssetReference] = []
                for r_id in child.xpath(".//a:blip/@r:embed"):
                    image_counter += 1
                    asset = self._save_image(document, r_id, assets_dir, job_id, image_counter)
                    if asset is None:
                        warnings.append(f"Не вдалося зберегти зображення #{image_counter}")
                        continue
                    block_assets.append(asset)
                    assets.append(asset)
                blocks.append(self._paragraph_block(paragraph, len(blocks), numbering, block_assets))
            elif child.tag == qn("w:tbl"):
                table = Table(child, document)
                for row in table.rows:
                    cells = []
                    for cell in row.cells:
                        cell_text = " ".join(p.text.strip() for p in cell.paragraphs if p.text.strip())
                        if cell_text:
                            cells.append(cell_text)
                    if not cells:
                        continue
                    blocks.append(DocBlock(index=len(blocks), text=" | ".join(cells)))

        logger.info("Extracted %s blocks and %s images from %s", len(blocks), len(assets), file_path.name)
        return ExtractionResult(blocks=blocks, assets=assets, warnings=warnings)

    def _paragraph_block(
        self,
        paragraph: Paragraph,
        index: int,
        numbering: _ListNumbering,
        assets: List[AssetReference],
    ) -> DocBlock:
        text = paragraph.text
        label = numbering.label_for(paragraph)
        if label and text.strip():
            text = f"{label} {text}"

        runs = [r for r in paragraph.runs if r.text and r.text.strip()]
        style = paragraph.style
        bold_runs = sum(1 for r in runs if self._run_flag(r.bold, style, "bold"))
        italic_runs = sum(1 for r in runs if self._run_flag(r.italic, style, "italic"))

        return DocBlock(
            index=index,
            text=text,
            style_id=style.style_id if style is not None else None,
            is_bold=bool(runs) and bold_runs * 2 > len(runs),
            is_italic=bool(runs) and italic_runs * 2 > len(runs),
            font_size_half_points=self._font_size(paragraph),
            assets=assets,
        )

    def _run_flag(self, value: Optional[bool], style, attr: str) -> bool:
        if value is not None:
            return value
        while style is not None:
            inherited = getattr(style.font, attr)
            if inherited is not None:
                return inherited
            style = style.base_style
        return False

    def _font_size(self, paragraph: Paragraph) -> Optional[int]:
        for run in paragraph.runs:
            if run.font.size is not None:
                return int(run.font.size.pt * 2)
        style = paragraph.style
        while style is not None:
            if style.font.size is not None:
                return int(style.font.size.pt * 2)
            style = style.base_style
        return None

    def _save_image(
        self,
        document,
        r_id: str,
        assets_dir: Path,
        job_id: str,
        counter: int,
    ) -> Optional[AssetReference]:
        try:
            part = document.part.related_parts[r_id]
            ext = os.path.splitext(str(part.partname))[1] or ".bin"
            file_name = f"{job_id}_img_{counter:03d}{ext}"
            blob = part.blob
            (assets_dir / file_name).write_bytes(blob)
        except (KeyError, OSError) as exc:
            logger.warning("Skipping image %s (%s): %s", counter, r_id, exc)
            return None
        return AssetReference(
            file_name=file_name,
            relative_url=f"/media/{file_name}",
            content_type=part.content_type,
            size_bytes=len(blob),
        )
