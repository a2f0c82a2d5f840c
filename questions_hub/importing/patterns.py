"""
Precompiled line-classification patterns for Ukrainian question packages.
"""

from __future__ import annotations

import re

_I = re.IGNORECASE
_LABEL_TAIL = r"\s*(?::|[.]\s?)\s*(.*)$"

# region Tours
TOUR_START = re.compile(r"^\s*(?:ТУР|Тур|Tour)\s+(\d+)[\.:]?\s*$", _I)
TOUR_START_WITH_PREAMBLE = re.compile(r"^\s*(?:ТУР|Тур|Tour)\s+(\d+)[\.:]?\s+(.+)$", _I)
TOUR_START_WITH_COLON = re.compile(r"^\s*(?:ТУР|Тур|Tour)\s*:\s*(\d+)\s*$", _I)
TOUR_START_DASHED = re.compile(r"^\s*[-–—]\s*(?:ТУР|Тур)\s+(\d+)[\.:]?\s*[-–—]\s*$", _I)
NUMBER_TOUR_START = re.compile(r"^\s*(\d+)\s+(?:ТУР|Тур|тур|Tour)[\.:,]?\s*$", _I)
TOUR_NUMBER_SIGN_START = re.compile(r"^\s*(?:ТУР|Тур|Tour)\s*№\s*(\d+)[\.:,]?\s*$", _I)
TOUR_NUMBER_SIGN_START_WITH_PREAMBLE = re.compile(
    r"^\s*(?:ТУР|Тур|Tour)\s*№\s*(\d+)[\.:,]?\s+[-–—.]?\s*(.+)$", _I
)
TOUR_ROMAN_START = re.compile(r"^\s*(?:ТУР|Тур|Tour)\s+([IІVXХLCDMіivxхlcdm]+)[\.:,]?\s*$", _I)
TOUR_ROMAN_START_WITH_PREAMBLE = re.compile(
    r"^\s*(?:ТУР|Тур|Tour)\s+([IІVXХLCDMіivxхlcdm]+)[\.:,]?\s+(.+)$", _I
)
ORDINAL_TOUR_START = re.compile(r"^\s*([ПпДдТтЧчШшСсВв]['ʼА-яІіЇїЄєҐґ]+)\s+[Тт][Уу][Рр]\s*$")
TOUR_ORDINAL_START = re.compile(r"^\s*[Тт][Уу][Рр]\s+([ПпДдТтЧчШшСсВв]['ʼА-яІіЇїЄєҐґ]+)\s*$")

WARMUP_TOUR_START = re.compile(r"^\s*(?:Розминка|Warmup|Розминковий\s+тур)\s*$", _I)
WARMUP_TOUR_START_DASHED = re.compile(r"^\s*[-–—]\s*(?:Розминка|Warmup)\s*[-–—]\s*$", _I)
TOUR_ZERO_START = re.compile(r"^\s*(?:ТУР|Тур|Tour)\s+0\s*$", _I)
WARMUP_QUESTION_LABEL = re.compile(r"^\s*(?:Розминочне\s+питання|Розминкове\s+питання|Розминка)\s*$", _I)

SHOOTOUT_TOUR_START = re.compile(r"^\s*Перестрілка\s*$", _I)
SHOOTOUT_TOUR_START_DASHED = re.compile(r"^\s*[-–—]\s*Перестрілка\s*[-–—]\s*$", _I)
# endregion

# region Blocks
BLOCK_START = re.compile(r"^\s*Блок(?:\s+(\d+))?[\.:]?\s*$", _I)
BLOCK_START_WITH_NAME = re.compile(r"^\s*Блок\s+([А-ЯІЇЄҐа-яіїєґʼ']+(?:\s+[А-ЯІЇЄҐа-яіїєґʼ']+)*)\s*\.?\s*$", _I)
BLOCK_EDITORS_LABEL = re.compile(r"^\s*(?:Редактор(?:и|ка|ки)?(?:\s*блоку)?)\s*[-–—:]\s*(.+)$", _I)
# endregion

# region Questions
QUESTION_START_WITH_TEXT = re.compile(r"^\s*(\d+)\.\s+(.*)$")
QUESTION_START_NUMBER_ONLY = re.compile(r"^\s*(\d+)\.\s*$")
QUESTION_START_NAMED = re.compile(r"^\s*(?:Запитання|Питання)\s+№?(\d+)[\.:]?\s*$", _I)
QUESTION_START_NAMED_WITH_TEXT = re.compile(r"^\s*(?:Запитання|Питання)\s+№?(\d+)[\.:]?\s+(.+)$", _I)
# endregion

# region Labels
ANSWER_LABEL = re.compile(r"^\s*(?:В[іi]дпов[іi]дь|Ответ)" + _LABEL_TAIL, _I)
ACCEPTED_LABEL = re.compile(r"^\s*(?:Залік(?:и)?|Зараховується)(?:\s*\([^)]+\))?" + _LABEL_TAIL, _I)
REJECTED_LABEL = re.compile(r"^\s*(?:Незалік|Не\s*залік|Не\s*приймається)" + _LABEL_TAIL, _I)
COMMENT_LABEL = re.compile(r"^\s*(?:Коментар|Коментарі|Комментарий|Комментар)" + _LABEL_TAIL, _I)
SOURCE_LABEL = re.compile(
    r"^\s*(?:Джерело|Джерела|Джерело\(а\)|Джерел\(а\)|Источник|Источники)" + _LABEL_TAIL, _I
)
AUTHOR_LABEL = re.compile(r"^\s*Автор(?:а|и|ы|ка|ки|\(и\))?" + _LABEL_TAIL, _I)
AUTHOR_RANGE_LABEL = re.compile(
    r"^\s*Автор(?:а|и|ы|ка|ки)?\s+запитань\s+(\d+)\s*[-–—]\s*(\d+)\s*:\s*(.+)$", _I
)
EDITORS_LABEL = re.compile(r"^\s*(?:Редактор(?:и|ка|ки)?(?:\s*туру)?)\s*[-–—:]\s*(.+)$", _I)
# endregion

# region Host instructions and handouts
HOST_INSTRUCTIONS_BRACKET = re.compile(
    r"^\s*\[(?:Ведучому|Ведучим|Ведучій|Вказівка\s*ведучому)[^:]*(?::\s*|[.\-–—]\s+)([^\]]+)\]\s*(.*)$", _I
)
HANDOUT_MARKER = re.compile(r"^\s*(?:Роздатка|Роздатковий\s*матері[ая]л)\s*[:\.]?\s*(.*)$", _I)
HANDOUT_MARKER_BRACKET = re.compile(
    r"^\s*\[(?:Роздатка|Роздатковий\s*матері[ая]л)\s*[:\.]?\s*([^\]]*)\]\s*(.*)$", _I
)
HANDOUT_MARKER_BRACKET_OPEN = re.compile(r"^\s*\[(?:Роздатка|Роздатковий\s*матері[ая]л)\s*[:\.]?\s*(.*)$", _I)
HANDOUT_MARKER_BRACKET_CLOSE = re.compile(r"^\s*\]\s*(.*)$")
# endregion

# Accepted/rejected markers that may follow answer text on the same line.
INLINE_LABEL_KEYWORDS = (
    "Залік:",
    "Заліки:",
    "Зараховується:",
    "Незалік:",
    "Не залік:",
    "Не приймається:",
)
