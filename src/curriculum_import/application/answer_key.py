"""Answer key and question extraction from exported test documents.

Test documents are plain text exports of Google Docs written by course
authors. The answer key lives in a ``Gabarito`` section::

    GABARITO
    1. A
    2) b Justificativa: ...
    3) Resposta: Verdadeiro

Without a section header, labelled lines such as ``Questão 1 - Gabarito: C``
are accepted instead.
"""

from __future__ import annotations

import re

from curriculum_import.domain.import_tasks import AnswerKeyEntry, QuestionDraft

MAX_QUESTION_NUMBER = 100
ANSWER_KEY_POINTS = 10

_SECTION_HEADER = re.compile(r"^gabarito\s*:?\s*$", re.IGNORECASE)
_UPPERCASE_HEADING = re.compile(r"^[A-ZÀ-Ý][A-ZÀ-Ý\s]+:?$")
_NUMBERED_LINE = re.compile(r"^(?:quest[aã]o\s*)?(\d+)\s*[.)\-]?\s*(.*)$", re.IGNORECASE)
_LABELLED_ANSWER = re.compile(
    r"(?:gabarito|resposta|alternativa\s+correta)\s*:\s*(.+)$",
    re.IGNORECASE,
)
_FALLBACK_LINE = re.compile(
    r"^(?:quest[aã]o\s*)?(\d+)\s*[.)\-]?.*?\b(?:gabarito|resposta)\s*:\s*(.+)$",
    re.IGNORECASE,
)
_INLINE_JUSTIFICATION = re.compile(r"\s+justificativa\s*:\s*(.+)$", re.IGNORECASE)
_BARE_ANSWER = re.compile(r"^(?:letra\s+)?([a-e]|v|f|verdadeiro|falso)\)?\.?$", re.IGNORECASE)
_FIRST_WORD = re.compile(r"[^\W\d_]+")
_JUSTIFICATION_PARAGRAPH = re.compile(
    r"[Jj]ustificativa\s*(\d+)?\s*[.:]\s*(.+?)(?=\n\s*\n|\n\d+[.)]|\n[A-Z][A-Z]+|\Z)",
    re.DOTALL,
)

_QUESTION_START = re.compile(r"^(\d+[.)\s]|quest[aã]o\s+\d+|q\d+)", re.IGNORECASE)
_OPTION_START = re.compile(r"^[a-e][.)\s]|^\([a-e]\)", re.IGNORECASE)
_CORRECT_MARKERS = ("*", "correta", "correct", "✓")
_MARKER_CLEANUP = re.compile(r"[*✓]|\(correta\)|\(correct\)", re.IGNORECASE)
_TRUE_FALSE_HINTS = ("verdadeiro", "falso", "v ou f")

_TRUE_WORDS = frozenset({"v", "verdadeiro", "true"})
_FALSE_WORDS = frozenset({"f", "falso", "false"})
_OPTION_LETTERS = "ABCDE"


def parse_answer_key(text: str) -> list[AnswerKeyEntry]:
    """Return answer key entries sorted by question number; empty when none found."""
    entries: dict[int, AnswerKeyEntry] = {}
    for number, answer, justification in _section_answers(text.splitlines()):
        _keep_first(entries, number, answer, justification)

    if not entries:
        for line in text.splitlines():
            match = _FALLBACK_LINE.match(line.strip())
            if match is None:
                continue
            answer = normalize_answer(match.group(2))
            if answer is not None:
                _keep_first(entries, int(match.group(1)), answer, None)

    if not entries:
        return []

    paragraphs = _justification_paragraphs(text)
    resolved = [
        entry
        if entry.justification
        else entry.model_copy(update={"justification": paragraphs.get(entry.question_number)})
        for entry in entries.values()
    ]
    return sorted(resolved, key=lambda entry: entry.question_number)


def normalize_answer(raw: str) -> str | None:
    """Map an answer token to ``A``..``E``, ``V`` or ``F``."""
    words = [word.casefold() for word in _FIRST_WORD.findall(raw)]
    if not words:
        return None

    first = words[0]
    if first == "letra" and len(words) > 1:
        first = words[1]
    if first in _TRUE_WORDS:
        return "V"
    if first in _FALSE_WORDS:
        return "F"
    if len(first) == 1 and first.upper() in _OPTION_LETTERS:
        return first.upper()
    return None


def extract_questions(text: str) -> list[QuestionDraft]:
    """Read numbered questions with ``a)``..``e)`` options up to the answer key section."""
    questions: list[QuestionDraft] = []
    current: dict[str, object] | None = None
    options: list[str] = []

    def flush() -> None:
        if current is not None and current["question"]:
            questions.append(QuestionDraft.model_validate({**current, "options": list(options)}))

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if _SECTION_HEADER.match(line):
            break

        question_match = _QUESTION_START.match(line)
        if question_match:
            flush()
            options = []
            lowered = line.casefold()
            current = {
                "question": line[question_match.end():].strip(),
                "type": (
                    "true_false"
                    if any(hint in lowered for hint in _TRUE_FALSE_HINTS)
                    else "multiple_choice"
                ),
                "correct_answer": None,
                "points": 1,
                "order": len(questions) + 1,
            }
            continue

        if current is None:
            continue

        if _OPTION_START.match(line):
            option_text = _OPTION_START.sub("", line, count=1).strip()
            options.append(_MARKER_CLEANUP.sub("", option_text).strip())
            lowered = line.casefold()
            if any(marker in lowered for marker in _CORRECT_MARKERS):
                current["correct_answer"] = len(options) - 1
            continue

        if current["type"] == "true_false":
            labelled = _LABELLED_ANSWER.search(line)
            if labelled:
                answer = normalize_answer(labelled.group(1))
                if answer in {"V", "F"}:
                    current["correct_answer"] = answer == "V"

    flush()
    return questions


def apply_answer_key(
    questions: list[QuestionDraft],
    answer_key: list[AnswerKeyEntry],
) -> list[QuestionDraft]:
    """Fill unanswered questions from the key by question order."""
    by_number = {entry.question_number: entry.correct_answer for entry in answer_key}
    resolved: list[QuestionDraft] = []
    for question in questions:
        answer = by_number.get(question.order)
        if question.correct_answer is not None or answer is None:
            resolved.append(question)
            continue

        if question.type == "true_false" and answer in {"V", "F"}:
            resolved.append(question.model_copy(update={"correct_answer": answer == "V"}))
        elif question.type == "multiple_choice" and answer in _OPTION_LETTERS:
            index = _OPTION_LETTERS.index(answer)
            if index < len(question.options):
                resolved.append(question.model_copy(update={"correct_answer": index}))
            else:
                resolved.append(question)
        else:
            resolved.append(question)
    return resolved


def _section_answers(lines: list[str]) -> list[tuple[int, str, str | None]]:
    answers: list[tuple[int, str, str | None]] = []
    in_section = False
    consumed = False
    for raw_line in lines:
        line = raw_line.strip()
        if not in_section:
            in_section = bool(_SECTION_HEADER.match(line))
            continue

        if not line:
            if consumed:
                in_section = False
            continue
        if _UPPERCASE_HEADING.match(line) and not _SECTION_HEADER.match(line):
            in_section = False
            continue

        consumed = True
        parsed = _parse_section_line(line)
        if parsed is not None:
            answers.append(parsed)
    return answers


def _parse_section_line(line: str) -> tuple[int, str, str | None] | None:
    match = _NUMBERED_LINE.match(line)
    if match is None:
        return None

    rest = match.group(2).strip()
    justification: str | None = None
    inline = _INLINE_JUSTIFICATION.search(rest)
    if inline:
        justification = inline.group(1).strip() or None
        rest = rest[: inline.start()].strip()

    labelled = _LABELLED_ANSWER.search(rest)
    if labelled:
        answer = normalize_answer(labelled.group(1))
    elif _BARE_ANSWER.match(rest):
        answer = normalize_answer(rest)
    else:
        answer = None

    if answer is None:
        return None
    return int(match.group(1)), answer, justification


def _keep_first(
    entries: dict[int, AnswerKeyEntry],
    number: int,
    answer: str,
    justification: str | None,
) -> None:
    if not 1 <= number <= MAX_QUESTION_NUMBER or number in entries:
        return
    entries[number] = AnswerKeyEntry(
        question_number=number,
        correct_answer=answer,
        points=ANSWER_KEY_POINTS,
        justification=justification,
    )


def _justification_paragraphs(text: str) -> dict[int, str]:
    paragraphs: dict[int, str] = {}
    sequence = 0
    for match in _JUSTIFICATION_PARAGRAPH.finditer(text):
        sequence += 1
        number = int(match.group(1)) if match.group(1) else sequence
        body = match.group(2).strip()
        if body and number not in paragraphs:
            paragraphs[number] = body
    return paragraphs
