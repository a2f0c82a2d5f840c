from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, List, Optional, Sequence, Set, Tuple

from . import patterns
from .models import (
    AssetReference,
    BlockDto,
    DocBlock,
    NumberingMode,
    ParseResult,
    QuestionDto,
    TourDto,
    TourType,
    demote_duplicate_special_tours,
)
from .names import convert_full_name_to_nominative, split_and_normalize_authors
from .text import normalize_apostrophes, normalize_whitespace_and_dashes, strip_accents

logger = logging.getLogger(__name__)


class ParserSection(str, Enum):
    PACKAGE_HEADER = "package_header"
    TOUR_HEADER = "tour_header"
    BLOCK_HEADER = "block_header"
    QUESTION_TEXT = "question_text"
    HOST_INSTRUCTIONS = "host_instructions"
    HANDOUT = "handout"
    ANSWER = "answer"
    ACCEPTED_ANSWERS = "accepted_answers"
    REJECTED_ANSWERS = "rejected_answers"
    COMMENT = "comment"
    SOURCE = "source"
    AUTHORS = "authors"


class _Mode(Enum):
    UNKNOWN = 0
    PER_TOUR = 1
    GLOBAL = 2


class _Format(Enum):
    UNKNOWN = 0
    NAMED = 1  # "Запитання N"
    NUMBERED = 2  # "N." / "N. text"


ANSWER_RELATED_SECTIONS = frozenset(
    {
        ParserSection.ANSWER,
        ParserSection.ACCEPTED_ANSWERS,
        ParserSection.REJECTED_ANSWERS,
        ParserSection.COMMENT,
        ParserSection.SOURCE,
        ParserSection.AUTHORS,
    }
)

# Question attribute that receives free text for each content section.
SECTION_FIELDS = {
    ParserSection.QUESTION_TEXT: "text",
    ParserSection.HOST_INSTRUCTIONS: "host_instructions",
    ParserSection.HANDOUT: "handout_text",
    ParserSection.ANSWER: "answer",
    ParserSection.ACCEPTED_ANSWERS: "accepted_answers",
    ParserSection.REJECTED_ANSWERS: "rejected_answers",
    ParserSection.COMMENT: "comment",
    ParserSection.SOURCE: "source",
}

LABEL_PATTERNS: Tuple[Tuple[re.Pattern, ParserSection], ...] = (
    (patterns.ANSWER_LABEL, ParserSection.ANSWER),
    (patterns.ACCEPTED_LABEL, ParserSection.ACCEPTED_ANSWERS),
    (patterns.REJECTED_LABEL, ParserSection.REJECTED_ANSWERS),
    (patterns.COMMENT_LABEL, ParserSection.COMMENT),
    (patterns.SOURCE_LABEL, ParserSection.SOURCE),
    (patterns.AUTHOR_LABEL, ParserSection.AUTHORS),
    (patterns.HANDOUT_MARKER, ParserSection.HANDOUT),
)

_PLAIN_TOUR_PATTERNS = (
    patterns.TOUR_START,
    patterns.TOUR_START_WITH_COLON,
    patterns.TOUR_START_DASHED,
    patterns.NUMBER_TOUR_START,
    patterns.TOUR_NUMBER_SIGN_START,
)

_ORDINALS: Tuple[Tuple[Callable[[str], bool], str], ...] = (
    (lambda s: s.startswith("перш"), "1"),
    (lambda s: s.startswith("друг"), "2"),
    (lambda s: s.startswith("трет"), "3"),
    (lambda s: s.startswith("четв"), "4"),
    (lambda s: s.startswith("п") and "ят" in s, "5"),
    (lambda s: s.startswith("шост"), "6"),
    (lambda s: s.startswith("сьом") or s.startswith("сём"), "7"),
    (lambda s: s.startswith("вось"), "8"),
    (lambda s: s.startswith("дев"), "9"),
)

_ROMAN_VALUES = {"I": 1, "V": 5, "X": 10, "L": 50, "C": 100, "D": 500, "M": 1000}

WARMUP_NUMBER = "0"
SHOOTOUT_NUMBER = "П"
TITLE_FONT_SIZE_RATIO = 0.70


@dataclass
class AuthorRangeRule:
    start: int
    end: int
    authors: List[str]


@dataclass
class ParserContext:
    """Mutable state of one parse run."""

    result: ParseResult = field(default_factory=ParseResult)
    current_section: ParserSection = ParserSection.PACKAGE_HEADER
    current_tour: Optional[TourDto] = None
    current_block_dto: Optional[BlockDto] = None
    current_question: Optional[QuestionDto] = None
    header_blocks: List[DocBlock] = field(default_factory=list)
    pending_assets: List[Tuple[AssetReference, ParserSection]] = field(default_factory=list)
    author_ranges: List[AuthorRangeRule] = field(default_factory=list)
    mode: _Mode = _Mode.UNKNOWN
    format: _Format = _Format.UNKNOWN
    expected_next_in_tour: Optional[int] = None
    expected_next_global: Optional[int] = None
    current_block: Optional[DocBlock] = None
    inside_multiline_handout_bracket: bool = False
    previous_question_in_block: Optional[QuestionDto] = None
    handout_marker_detected_in_current_block: bool = False
    associated_asset_file_names: Set[str] = field(default_factory=set)

    def collect_header_block(self) -> None:
        if self.current_block is None:
            return
        if self.header_blocks and self.header_blocks[-1] is self.current_block:
            return
        self.header_blocks.append(self.current_block)


class PackageParser:
    """
    Single-pass classifier turning extracted document blocks into a
    ParseResult. Every line is matched against tour, block and question
    starts first, then against field labels; anything else continues the
    field that is currently open.
    """

    def parse(self, blocks: Sequence[DocBlock]) -> ParseResult:
        ctx = ParserContext()
        logger.info("Parsing %s blocks", len(blocks))

        for block in blocks:
            self._process_block(block, ctx)

        self._finalize(ctx)
        logger.info(
            "Parsed %s tours, %s questions, confidence %.0f%%",
            len(ctx.result.tours),
            ctx.result.total_questions,
            ctx.result.confidence * 100,
        )
        return ctx.result

    # region Blocks and lines
    def _process_block(self, block: DocBlock, ctx: ParserContext) -> None:
        text = strip_accents(normalize_whitespace_and_dashes(block.text) or "")
        if not text.strip() and not block.assets:
            # Empty paragraph: keeps a paragraph break inside the open field.
            self._append_blank_line(ctx)
            return

        ctx.current_block = block
        ctx.previous_question_in_block = None
        ctx.handout_marker_detected_in_current_block = False
        ctx.associated_asset_file_names = set()

        for raw_line in text.split("\n"):
            line = raw_line.strip()
            if not line:
                self._append_blank_line(ctx)
                continue
            self._process_line(line, ctx)

        self._associate_block_assets(block.assets, ctx)

    def _append_blank_line(self, ctx: ParserContext) -> None:
        question = ctx.current_question
        if question is None or ctx.inside_multiline_handout_bracket:
            return
        attr = SECTION_FIELDS.get(ctx.current_section)
        if attr is None:
            return
        existing = getattr(question, attr)
        if not existing or existing.endswith("\n"):
            return
        setattr(question, attr, existing + "\n")

    def _process_line(self, line: str, ctx: ParserContext) -> None:
        if ctx.inside_multiline_handout_bracket:
            self._process_multiline_handout_content(line, ctx)
            return
        if self._try_process_tour_start(line, ctx):
            return
        if self._try_process_block_start(line, ctx):
            return
        if self._try_process_author_range(line, ctx):
            return
        if self._try_process_question_start(line, ctx):
            return
        if ctx.current_tour is None:
            ctx.collect_header_block()
            return
        if self._try_process_host_instructions(line, ctx):
            return
        if self._try_process_bracketed_handout(line, ctx):
            return
        self._process_label_or_content(line, ctx)

    def _process_multiline_handout_content(self, line: str, ctx: ParserContext) -> None:
        question = ctx.current_question
        close_match = patterns.HANDOUT_MARKER_BRACKET_CLOSE.match(line)
        if close_match:
            ctx.inside_multiline_handout_bracket = False
            ctx.current_section = ParserSection.QUESTION_TEXT
            after = close_match.group(1).strip()
            if after and question is not None:
                question.text = append_text(question.text, normalize_apostrophes(after))
            return

        bracket_index = line.find("]")
        if bracket_index >= 0:
            ctx.inside_multiline_handout_bracket = False
            ctx.current_section = ParserSection.QUESTION_TEXT
            before = line[:bracket_index].strip()
            after = line[bracket_index + 1 :].strip()
            if question is not None:
                if before:
                    question.handout_text = append_text(question.handout_text, normalize_apostrophes(before))
                if after:
                    question.text = append_text(question.text, normalize_apostrophes(after))
            return

        if question is not None:
            question.handout_text = append_text(question.handout_text, normalize_apostrophes(line))

    # endregion

    # region Tours and blocks
    def _try_process_tour_start(self, line: str, ctx: ParserContext) -> bool:
        preamble: Optional[str] = None
        if _is_warmup_tour_start(line) or self._is_warmup_question_label(line, ctx):
            tour_type, number = TourType.WARMUP, WARMUP_NUMBER
        elif _is_shootout_tour_start(line):
            tour_type, number = TourType.SHOOTOUT, SHOOTOUT_NUMBER
        else:
            parsed = parse_tour_start(line)
            if parsed is None:
                return False
            tour_type = TourType.REGULAR
            number, preamble = parsed

        self._save_current_question(ctx)
        self._ensure_package_header_parsed(ctx)

        tour = TourDto(
            number=number,
            order_index=len(ctx.result.tours),
            type=tour_type,
            preamble=normalize_apostrophes(preamble),
        )
        ctx.result.tours.append(tour)
        ctx.current_tour = tour
        ctx.current_block_dto = None
        ctx.current_question = None
        ctx.current_section = ParserSection.TOUR_HEADER
        ctx.expected_next_in_tour = None
        # Each tour may use its own question format.
        ctx.format = _Format.UNKNOWN
        logger.debug("Found tour %s (%s)", number, tour_type.value)
        return True

    def _is_warmup_question_label(self, line: str, ctx: ParserContext) -> bool:
        if ctx.result.tours:
            return False
        if ctx.current_block is None or not ctx.current_block.is_bold:
            return False
        return bool(patterns.WARMUP_QUESTION_LABEL.match(line))

    def _try_process_block_start(self, line: str, ctx: ParserContext) -> bool:
        block_name: Optional[str] = None
        editor_genitive: Optional[str] = None
        match = patterns.BLOCK_START.match(line)
        if match:
            block_name = match.group(1)
        else:
            named = patterns.BLOCK_START_WITH_NAME.match(line)
            if not named:
                return False
            editor_genitive = named.group(1).strip()

        if ctx.current_tour is None:
            return False

        self._save_current_question(ctx)
        block = BlockDto(name=block_name, order_index=len(ctx.current_tour.blocks))
        if editor_genitive is not None:
            nominative = convert_full_name_to_nominative(editor_genitive)
            block.editors.append(strip_accents(normalize_apostrophes(nominative)))

        ctx.current_tour.blocks.append(block)
        ctx.current_block_dto = block
        ctx.current_question = None
        ctx.current_section = ParserSection.BLOCK_HEADER
        logger.debug("Found block %s in tour %s", block_name or editor_genitive or "-", ctx.current_tour.number)
        return True

    # endregion

    # region Questions
    def _try_process_author_range(self, line: str, ctx: ParserContext) -> bool:
        if ctx.current_question is not None:
            return False
        match = patterns.AUTHOR_RANGE_LABEL.match(line)
        if not match:
            return False
        authors = parse_author_list(match.group(3).strip())
        if authors:
            ctx.author_ranges.append(AuthorRangeRule(int(match.group(1)), int(match.group(2)), authors))
        return True

    def _try_process_question_start(self, line: str, ctx: ParserContext) -> bool:
        parsed = parse_question_start(line)
        if parsed is None:
            return False
        number, remaining, detected_format = parsed

        # Numbered lines before the first tour belong to the header.
        if ctx.current_tour is None:
            return False

        if (
            detected_format == _Format.NUMBERED
            and ctx.current_section == ParserSection.SOURCE
            and not self._is_expected_next_number(number, ctx)
        ):
            self._process_as_regular_content(line, ctx)
            return True

        if ctx.format == _Format.NAMED and detected_format == _Format.NUMBERED:
            self._process_as_regular_content(line, ctx)
            return True

        if not self._accept_next_number(number, ctx):
            self._process_as_regular_content(line, ctx)
            return True

        if ctx.format == _Format.UNKNOWN:
            ctx.format = detected_format

        self._flush_pending_assets_to_current_question(ctx)
        if ctx.current_question is not None:
            ctx.previous_question_in_block = ctx.current_question
        self._save_current_question(ctx)

        question = QuestionDto(number=number)
        ctx.current_question = question
        ctx.current_section = ParserSection.QUESTION_TEXT
        ctx.handout_marker_detected_in_current_block = False

        self._apply_pending_assets_to_new_question(ctx)
        self._process_text_after_question_number(remaining, ctx)
        logger.debug("Found question %s", number)
        return True

    def _process_text_after_question_number(self, remaining: str, ctx: ParserContext) -> None:
        if not remaining.strip():
            return
        question = ctx.current_question

        handout = patterns.HANDOUT_MARKER.match(remaining)
        if handout:
            ctx.handout_marker_detected_in_current_block = True
            ctx.current_section = ParserSection.HANDOUT
            content = handout.group(1).strip()
            if content:
                question.handout_text = append_text(question.handout_text, normalize_apostrophes(content))
            return

        bracketed = extract_bracketed_handout(remaining)
        if bracketed is not None:
            handout_text, after = bracketed
            ctx.handout_marker_detected_in_current_block = True
            ctx.current_section = ParserSection.QUESTION_TEXT
            if handout_text:
                question.handout_text = append_text(question.handout_text, normalize_apostrophes(handout_text))
            if after:
                question.text = append_text(question.text, normalize_apostrophes(after))
            return

        opening = extract_multiline_handout_opening(remaining)
        if opening is not None:
            ctx.handout_marker_detected_in_current_block = True
            ctx.current_section = ParserSection.HANDOUT
            ctx.inside_multiline_handout_bracket = True
            if opening:
                question.handout_text = append_text(question.handout_text, normalize_apostrophes(opening))
            return

        instructions = extract_host_instructions(remaining)
        if instructions is not None:
            host_text, after = instructions
            question.host_instructions = append_text(question.host_instructions, normalize_apostrophes(host_text))
            if after:
                question.text = append_text(question.text, normalize_apostrophes(after))
            return

        question.text = append_text(question.text, normalize_apostrophes(remaining))

    def _process_as_regular_content(self, line: str, ctx: ParserContext) -> None:
        if ctx.current_tour is not None:
            self._process_label_or_content(line, ctx)
        else:
            ctx.collect_header_block()

    def _try_process_host_instructions(self, line: str, ctx: ParserContext) -> bool:
        question = ctx.current_question
        if question is None:
            return False
        instructions = extract_host_instructions(line)
        if instructions is None:
            return False
        host_text, after = instructions
        question.host_instructions = append_text(question.host_instructions, normalize_apostrophes(host_text))
        if after:
            question.text = append_text(question.text, normalize_apostrophes(after))
        return True

    def _try_process_bracketed_handout(self, line: str, ctx: ParserContext) -> bool:
        question = ctx.current_question
        bracketed = extract_bracketed_handout(line)
        if bracketed is not None:
            handout_text, after = bracketed
            ctx.handout_marker_detected_in_current_block = True
            if question is not None:
                if handout_text:
                    question.handout_text = append_text(question.handout_text, normalize_apostrophes(handout_text))
                if after:
                    question.text = append_text(question.text, normalize_apostrophes(after))
            ctx.current_section = ParserSection.QUESTION_TEXT
            return True

        opening = extract_multiline_handout_opening(line)
        if opening is not None:
            ctx.handout_marker_detected_in_current_block = True
            ctx.current_section = ParserSection.HANDOUT
            ctx.inside_multiline_handout_bracket = True
            if question is not None and opening:
                question.handout_text = append_text(question.handout_text, normalize_apostrophes(opening))
            return True
        return False

    # endregion

    # region Labels and content
    def _process_label_or_content(self, line: str, ctx: ParserContext) -> None:
        section, remainder = detect_label(line)
        if section is not None:
            ctx.current_section = section
            line = remainder
            if section == ParserSection.HANDOUT:
                ctx.handout_marker_detected_in_current_block = True

        if not line.strip():
            return

        if ctx.current_section == ParserSection.HANDOUT and self._process_handout_brackets(line, ctx):
            return

        inline_index = find_inline_label_start(line)
        if inline_index > 0:
            before = line[:inline_index].strip()
            if before:
                self._append_to_section(ctx.current_section, before, ctx)
            self._process_label_or_content(line[inline_index:], ctx)
        else:
            self._append_to_section(ctx.current_section, line, ctx)

    def _process_handout_brackets(self, line: str, ctx: ParserContext) -> bool:
        """Bracket forms that may follow a bare handout label line."""
        question = ctx.current_question
        if line == "[":
            ctx.inside_multiline_handout_bracket = True
            return True
        if line == "]":
            ctx.inside_multiline_handout_bracket = False
            ctx.current_section = ParserSection.QUESTION_TEXT
            return True

        content: Optional[str] = None
        if line.startswith("[") and line.endswith("]"):
            content = line[1:-1].strip()
            ctx.current_section = ParserSection.QUESTION_TEXT
        elif line.startswith("["):
            content = line[1:].strip()
            ctx.inside_multiline_handout_bracket = True
        elif line.endswith("]"):
            content = line[:-1].strip()
            ctx.current_section = ParserSection.QUESTION_TEXT
        else:
            return False

        if content and question is not None:
            question.handout_text = append_text(question.handout_text, normalize_apostrophes(content))
        return True

    def _append_to_section(self, section: ParserSection, text: str, ctx: ParserContext) -> None:
        question = ctx.current_question
        if question is None:
            self._append_to_header(section, text, ctx)
            return

        if section == ParserSection.AUTHORS:
            question.authors.extend(parse_author_list(text))
            return
        attr = SECTION_FIELDS.get(section)
        if attr is None:
            return
        # Sources keep their apostrophes untouched, they often hold URLs.
        value = text if section == ParserSection.SOURCE else normalize_apostrophes(text)
        setattr(question, attr, append_text(getattr(question, attr), value))

    def _append_to_header(self, section: ParserSection, text: str, ctx: ParserContext) -> None:
        tour = ctx.current_tour
        if section == ParserSection.TOUR_HEADER and tour is not None:
            match = patterns.EDITORS_LABEL.match(text)
            if match:
                tour.editors.extend(parse_author_list(match.group(1)))
            else:
                tour.preamble = append_text(tour.preamble, normalize_apostrophes(text))
        elif section == ParserSection.BLOCK_HEADER and ctx.current_block_dto is not None:
            block = ctx.current_block_dto
            match = patterns.BLOCK_EDITORS_LABEL.match(text) or patterns.EDITORS_LABEL.match(text)
            if match:
                block.editors.extend(parse_author_list(match.group(1)))
            else:
                block.preamble = append_text(block.preamble, normalize_apostrophes(text))

    # endregion

    # region Assets
    def _associate_block_assets(self, assets: Iterable[AssetReference], ctx: ParserContext) -> None:
        unassociated = [a for a in assets if a.file_name not in ctx.associated_asset_file_names]
        if not unassociated:
            return

        question = ctx.current_question
        if question is None:
            for asset in unassociated:
                ctx.pending_assets.append((asset, ctx.current_section))
                ctx.associated_asset_file_names.add(asset.file_name)
            return

        if ctx.previous_question_in_block is not None and not ctx.handout_marker_detected_in_current_block:
            # The block closed one question and opened another: the first
            # image illustrates the previous answer.
            first, rest = unassociated[0], unassociated[1:]
            associate_asset(first, ParserSection.COMMENT, ctx.previous_question_in_block, ctx.result)
            ctx.associated_asset_file_names.add(first.file_name)
            for asset in rest:
                associate_asset(asset, ParserSection.COMMENT, question, ctx.result)
                ctx.associated_asset_file_names.add(asset.file_name)
            return

        section = ParserSection.HANDOUT if ctx.inside_multiline_handout_bracket else ctx.current_section
        for asset in unassociated:
            associate_asset(asset, section, question, ctx.result)
            ctx.associated_asset_file_names.add(asset.file_name)

    def _flush_pending_assets_to_current_question(self, ctx: ParserContext) -> None:
        if ctx.current_question is None or not ctx.pending_assets:
            return
        for asset, section in ctx.pending_assets:
            associate_asset(asset, section, ctx.current_question, ctx.result)
        ctx.pending_assets.clear()

    def _apply_pending_assets_to_new_question(self, ctx: ParserContext) -> None:
        for asset, section in ctx.pending_assets:
            associate_asset(asset, section, ctx.current_question, ctx.result)
        ctx.pending_assets.clear()

    # endregion

    # region Numbering
    def _accept_next_number(self, number: str, ctx: ParserContext) -> bool:
        accepted, in_tour, global_next, mode = check_next_question_number(
            number, ctx.expected_next_in_tour, ctx.expected_next_global, ctx.mode
        )
        if accepted:
            ctx.expected_next_in_tour = in_tour
            ctx.expected_next_global = global_next
            ctx.mode = mode
        return accepted

    def _is_expected_next_number(self, number: str, ctx: ParserContext) -> bool:
        accepted, _, _, _ = check_next_question_number(
            number, ctx.expected_next_in_tour, ctx.expected_next_global, ctx.mode
        )
        return accepted

    # endregion

    # region Finalization
    def _save_current_question(self, ctx: ParserContext) -> None:
        question = ctx.current_question
        if question is None or ctx.current_tour is None:
            return
        self._finalize_question(question, ctx)
        if ctx.current_block_dto is not None:
            ctx.current_block_dto.questions.append(question)
        else:
            ctx.current_tour.questions.append(question)

    def _finalize_question(self, question: QuestionDto, ctx: ParserContext) -> None:
        if not question.authors and question.number.isdigit():
            qn = int(question.number)
            for rule in ctx.author_ranges:
                if rule.start <= qn <= rule.end:
                    question.authors.extend(rule.authors)
                    break
        if not question.has_text:
            ctx.result.warnings.append(f"Питання {question.number}: текст питання не знайдено")
        if not question.has_answer:
            ctx.result.warnings.append(f"Питання {question.number}: відповідь не знайдено")

    def _ensure_package_header_parsed(self, ctx: ParserContext) -> None:
        if ctx.current_tour is None and ctx.header_blocks:
            parse_package_header(ctx.header_blocks, ctx.result)

    def _finalize(self, ctx: ParserContext) -> None:
        self._save_current_question(ctx)
        result = ctx.result
        if not result.tours and ctx.header_blocks:
            parse_package_header(ctx.header_blocks, result)

        _ensure_special_tour_positions(result)
        result.numbering_mode = self._detect_numbering_mode(ctx)
        for idx, tour in enumerate(result.tours):
            tour.order_index = idx
            for q_idx, question in enumerate(tour.all_questions()):
                question.order_index = q_idx
                _trim_question_fields(question)
        result.confidence = calculate_confidence(result)

    def _detect_numbering_mode(self, ctx: ParserContext) -> NumberingMode:
        for tour in ctx.result.tours:
            if any(not q.number.isdigit() for q in tour.all_questions()):
                return NumberingMode.MANUAL
        if ctx.mode == _Mode.PER_TOUR:
            return NumberingMode.PER_TOUR
        return NumberingMode.GLOBAL

    # endregion


# region Module helpers
def append_text(existing: Optional[str], new_text: str) -> str:
    if not existing or not existing.strip():
        return new_text
    return existing + "\n" + new_text


def trim_blank_lines(text: Optional[str]) -> str:
    if not text:
        return ""
    lines = text.split("\n")
    start, end = 0, len(lines) - 1
    while start <= end and not lines[start].strip():
        start += 1
    while end >= start and not lines[end].strip():
        end -= 1
    return "\n".join(lines[start : end + 1])


def _trim_question_fields(question: QuestionDto) -> None:
    question.text = trim_blank_lines(question.text)
    question.answer = trim_blank_lines(question.answer)
    for attr in ("accepted_answers", "rejected_answers", "comment", "source", "handout_text", "host_instructions"):
        value = getattr(question, attr)
        if value is not None:
            setattr(question, attr, trim_blank_lines(value) or None)


def detect_label(text: str) -> Tuple[Optional[ParserSection], str]:
    for pattern, section in LABEL_PATTERNS:
        match = pattern.match(text)
        if match:
            return section, match.group(1).strip()
    return None, text


def find_inline_label_start(text: str) -> int:
    lowered = text.lower()
    positions = [lowered.find(keyword.lower()) for keyword in patterns.INLINE_LABEL_KEYWORDS]
    positions = [p for p in positions if p > 0]
    return min(positions) if positions else -1


def extract_host_instructions(text: str) -> Optional[Tuple[str, str]]:
    match = patterns.HOST_INSTRUCTIONS_BRACKET.match(text)
    if not match:
        return None
    return match.group(1).strip(), match.group(2).strip()


def extract_bracketed_handout(text: str) -> Optional[Tuple[str, str]]:
    match = patterns.HANDOUT_MARKER_BRACKET.match(text)
    if not match:
        return None
    return match.group(1).strip(), match.group(2).strip()


def extract_multiline_handout_opening(text: str) -> Optional[str]:
    if "]" in text:
        return None
    match = patterns.HANDOUT_MARKER_BRACKET_OPEN.match(text)
    if not match:
        return None
    return match.group(1).strip()


def parse_author_list(text: str) -> List[str]:
    names: List[str] = []
    for chunk in re.split(r"[,;]", text):
        for piece in re.split(r" та | і | and ", chunk):
            name = normalize_apostrophes(strip_accents(piece.strip().rstrip(".,;")))
            if not name or not name.strip():
                continue
            names.extend(p for p in split_and_normalize_authors(name) if p.strip())
    return names


def parse_question_start(text: str) -> Optional[Tuple[str, str, _Format]]:
    match = patterns.QUESTION_START_NAMED_WITH_TEXT.match(text)
    if match:
        return match.group(1), match.group(2).strip(), _Format.NAMED
    match = patterns.QUESTION_START_NAMED.match(text)
    if match:
        return match.group(1), "", _Format.NAMED
    match = patterns.QUESTION_START_WITH_TEXT.match(text)
    if match:
        return match.group(1), match.group(2).strip(), _Format.NUMBERED
    match = patterns.QUESTION_START_NUMBER_ONLY.match(text)
    if match:
        return match.group(1), "", _Format.NUMBERED
    return None


def check_next_question_number(
    number: str,
    expected_in_tour: Optional[int],
    expected_global: Optional[int],
    mode: _Mode,
) -> Tuple[bool, Optional[int], Optional[int], _Mode]:
    """
    Decide whether `number` continues the question sequence. Returns the
    verdict and the updated (expected in tour, expected global, mode).
    """
    rejected = (False, expected_in_tour, expected_global, mode)
    if not number.isdigit():
        return rejected
    qn = int(number)

    if expected_global is None:
        if qn in (0, 1):
            return True, qn + 1, qn + 1, mode
        return rejected

    if expected_in_tour is None:
        if mode == _Mode.UNKNOWN:
            if qn == expected_global:
                mode = _Mode.GLOBAL
            elif qn in (0, 1):
                mode = _Mode.PER_TOUR
            else:
                return rejected
        if mode == _Mode.GLOBAL:
            if qn != expected_global:
                return rejected
            return True, qn + 1, qn + 1, mode
        if qn in (0, 1):
            return True, qn + 1, expected_global, mode
        return rejected

    if mode == _Mode.GLOBAL:
        if qn != expected_global:
            return rejected
        return True, qn + 1, qn + 1, mode
    if mode == _Mode.PER_TOUR:
        if qn != expected_in_tour:
            return rejected
        return True, qn + 1, expected_global, mode

    ok_in_tour = qn == expected_in_tour
    ok_global = qn == expected_global
    if not ok_in_tour and not ok_global:
        return rejected
    if ok_global and not ok_in_tour:
        mode = _Mode.GLOBAL
    elif ok_in_tour and not ok_global:
        mode = _Mode.PER_TOUR
    return True, qn + 1, (qn + 1 if ok_global else expected_global), mode


def parse_tour_start(text: str) -> Optional[Tuple[str, Optional[str]]]:
    """Return (tour number, preamble) for a regular tour heading, else None."""
    for pattern in _PLAIN_TOUR_PATTERNS:
        match = pattern.match(text)
        if match:
            return match.group(1), None

    for pattern in (patterns.TOUR_START_WITH_PREAMBLE, patterns.TOUR_NUMBER_SIGN_START_WITH_PREAMBLE):
        match = pattern.match(text)
        if match:
            return match.group(1), match.group(2).strip()

    match = patterns.TOUR_ROMAN_START.match(text)
    if match:
        number = roman_to_number(match.group(1))
        if number is not None:
            return number, None
    match = patterns.TOUR_ROMAN_START_WITH_PREAMBLE.match(text)
    if match:
        number = roman_to_number(match.group(1))
        if number is not None:
            return number, match.group(2).strip()

    normalized = normalize_apostrophes(text)
    for pattern in (patterns.ORDINAL_TOUR_START, patterns.TOUR_ORDINAL_START):
        match = pattern.match(normalized)
        if match:
            return ordinal_to_number(match.group(1)), None
    return None


def roman_to_number(roman: str) -> Optional[str]:
    normalized = roman.replace("І", "I").replace("і", "I").replace("Х", "X").replace("х", "X").upper()
    total = 0
    previous = 0
    for ch in reversed(normalized):
        value = _ROMAN_VALUES.get(ch)
        if value is None:
            return None
        total = total - value if value < previous else total + value
        previous = value
    if total <= 0 or total > 50:
        return None
    return str(total)


def ordinal_to_number(ordinal: str) -> str:
    normalized = normalize_apostrophes(ordinal).lower()
    for predicate, number in _ORDINALS:
        if predicate(normalized):
            return number
    return "1"


def _is_warmup_tour_start(text: str) -> bool:
    return any(
        p.match(text)
        for p in (patterns.WARMUP_TOUR_START, patterns.WARMUP_TOUR_START_DASHED, patterns.TOUR_ZERO_START)
    )


def _is_shootout_tour_start(text: str) -> bool:
    return bool(patterns.SHOOTOUT_TOUR_START.match(text) or patterns.SHOOTOUT_TOUR_START_DASHED.match(text))


def associate_asset(
    asset: AssetReference,
    section: ParserSection,
    question: Optional[QuestionDto],
    result: Optional[ParseResult] = None,
) -> None:
    """Attach an asset to the comment slot after an answer section opened, else to the handout slot."""
    if question is None:
        return
    if section in ANSWER_RELATED_SECTIONS:
        if question.comment_asset_file_name is None:
            question.comment_asset_file_name = asset.file_name
        elif result is not None:
            result.warnings.append(
                f"Питання {question.number}: зайве зображення коментаря пропущено: {asset.file_name} "
                f"(вже є: {question.comment_asset_file_name})"
            )
        return
    if question.handout_asset_file_name is None:
        question.handout_asset_file_name = asset.file_name
    elif result is not None:
        result.warnings.append(
            f"Питання {question.number}: зайве зображення роздатки пропущено: {asset.file_name} "
            f"(вже є: {question.handout_asset_file_name})"
        )


def _ensure_special_tour_positions(result: ParseResult) -> None:
    for tour in demote_duplicate_special_tours(result.tours):
        result.warnings.append(
            f"Тур {tour.number}: повторний тур розминки або перестрілки, позначено як звичайний"
        )
    warmup = next((t for t in result.tours if t.type == TourType.WARMUP), None)
    shootout = next((t for t in result.tours if t.type == TourType.SHOOTOUT), None)
    if warmup is not None:
        result.tours.remove(warmup)
        result.tours.insert(0, warmup)
    if shootout is not None:
        result.tours.remove(shootout)
        result.tours.append(shootout)


def calculate_confidence(result: ParseResult) -> float:
    if not result.tours:
        return 0.0
    questions = [q for tour in result.tours for q in tour.all_questions()]
    if not questions:
        return 0.2
    answer_ratio = sum(1 for q in questions if q.has_answer) / len(questions)
    text_ratio = sum(1 for q in questions if q.has_text) / len(questions)
    return answer_ratio * 0.6 + text_ratio * 0.4


def parse_package_header(header_blocks: List[DocBlock], result: ParseResult) -> None:
    if not header_blocks:
        return
    title_blocks = determine_title_blocks(header_blocks)
    if title_blocks:
        title = " ".join(normalize_whitespace_and_dashes(b.text) or "" for b in title_blocks)
        result.title = normalize_apostrophes(title)

    preamble_lines: List[str] = []
    for block in header_blocks[len(title_blocks) :]:
        text = normalize_whitespace_and_dashes(block.text) or ""
        if not text:
            continue
        match = patterns.EDITORS_LABEL.match(text)
        if match:
            result.editors.extend(parse_author_list(match.group(1)))
        else:
            preamble_lines.append(normalize_apostrophes(text))
    if preamble_lines:
        result.preamble = "\n".join(preamble_lines)


def determine_title_blocks(header_blocks: List[DocBlock]) -> List[DocBlock]:
    candidates = header_blocks[:3]
    if not candidates:
        return []
    first = candidates[0]
    if _is_title_terminator(first.text):
        return []

    first_has_title_style = _has_title_or_heading_style(first)
    if first.font_size_half_points:
        reference = first.font_size_half_points
        title = [first]
        for block in candidates[1:]:
            if _is_title_terminator(block.text):
                break
            if first_has_title_style and not _has_title_or_heading_style(block):
                break
            if block.font_size_half_points is not None and block.font_size_half_points / reference < TITLE_FONT_SIZE_RATIO:
                break
            title.append(block)
        return title

    styled: List[DocBlock] = []
    for block in candidates:
        if _is_title_terminator(block.text) or not _has_title_or_heading_style(block):
            break
        styled.append(block)
    return styled or [first]


def _has_title_or_heading_style(block: DocBlock) -> bool:
    style = (block.style_id or "").lower()
    return "title" in style or "heading" in style


def _is_title_terminator(text: Optional[str]) -> bool:
    if not text or not text.strip():
        return False
    trimmed = text.lstrip()
    return trimmed.startswith("[") or bool(patterns.EDITORS_LABEL.match(trimmed))


# endregion
