"""Parsers for topic suggestions and quiz payloads in model output."""
import json
import logging
import re

from surge_tutor.errors import QuizGenerationError
from surge_tutor.models import SurgeQuizQuestion

logger = logging.getLogger(__name__)

TOPIC_SUGGESTION_TARGET = 4

_SUGGESTION_RE = re.compile(r"TOPIC[_\s-]*SUGGESTION\s*[:\-]\s*([^\r\n]+?)(?:\r?\n|$)", re.IGNORECASE)
_BLOCK_RE = re.compile(r"◊(MC|SA):([\s\S]*?)◊", re.IGNORECASE)
_OPTION_RE = re.compile(r"([A-D])\)\s*([^A-D]+?)(?=\s*[A-D]\)|$)")
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")
_BAD_ESCAPE_RE = re.compile(r'\\(?!["\\/bfnrtu])')
_LETTER_PAREN_PREFIX_RE = re.compile(r"^[A-Z]+\s*\)\s*", re.IGNORECASE)
_LETTER_DOT_PREFIX_RE = re.compile(r"^[A-Z]\s*[\.:]\s*", re.IGNORECASE)


def _int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value >= 0x80000000 else value


def _code_units(text: str) -> list[int]:
    # Hashes run over UTF-16 code units so ids stay stable across clients.
    data = text.encode("utf-16-le", "surrogatepass")
    return [int.from_bytes(data[i:i + 2], "little") for i in range(0, len(data), 2)]


def create_quiz_question_id(prefix: str, text: str) -> str:
    h = 0
    for unit in _code_units(text):
        h = _int32(_int32(h << 5) - h + unit)
    return f"{prefix}-{abs(h)}"


def stable_text_hash(text: str) -> str:
    h = 5381
    for unit in _code_units(text):
        h = _int32(_int32(h << 5) + h) ^ unit
    return format(h & 0xFFFFFFFF, "x")


def _clean_topic(raw: str) -> str:
    topic = re.sub(r"^[-•]\s*", "", raw)
    topic = re.sub(r"[`*\"_]", "", topic).strip()
    return re.sub(r"^[0-9]+\.\s*", "", topic).strip()


def extract_topic_suggestions(text: str, required_count: int = TOPIC_SUGGESTION_TARGET) -> list[str]:
    """Pull ``TOPIC_SUGGESTION: name`` lines out of (possibly partial) model text.

    Topics are deduplicated case-insensitively with whitespace collapsed and
    returned in order of first appearance, at most ``required_count`` of them.
    """
    if "TOPIC" not in text and "SUGGESTION" not in text:
        return []
    topics: list[str] = []
    seen: set[str] = set()
    for match in _SUGGESTION_RE.finditer(text):
        topic = _clean_topic(match.group(1))
        if not topic:
            continue
        normalized = " ".join(topic.lower().split())
        if normalized in seen:
            continue
        seen.add(normalized)
        topics.append(topic)
        if len(topics) >= required_count:
            break
    return topics[:required_count]


def sanitize_json_payload(raw: str) -> str:
    """Cut a JSON object out of model text and repair common breakage."""
    s = (raw or "").strip()
    if not s:
        return ""
    first, last = s.find("{"), s.rfind("}")
    if first == -1 or last == -1 or last <= first:
        return s
    body = s[first:last + 1]
    body = _TRAILING_COMMA_RE.sub(r"\1", body)
    return _BAD_ESCAPE_RE.sub(r"\\\\", body)


def _text(value) -> str:
    return "" if value is None else str(value).strip()


def _clean_option(option) -> str:
    text = _text(option)
    text = _LETTER_PAREN_PREFIX_RE.sub("", text)
    return _LETTER_DOT_PREFIX_RE.sub("", text)


def extract_quiz_questions_from_json(raw: str) -> list[SurgeQuizQuestion]:
    cleaned = sanitize_json_payload(raw)
    if not cleaned:
        return []
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as e:
        logger.debug("Quiz JSON did not parse: %s", e)
        return []
    if not isinstance(payload, dict):
        return []

    results = []
    mc_items = payload.get("mc")
    if not isinstance(mc_items, list):
        mc_items = payload.get("questions")
    if not isinstance(mc_items, list):
        mc_items = []

    for idx, item in enumerate(mc_items):
        if not isinstance(item, dict):
            continue
        question = _text(item.get("question"))
        raw_options = item.get("options") if isinstance(item.get("options"), list) else []
        options = [o for o in (_clean_option(opt) for opt in raw_options) if o][:4]
        correct_raw = item.get("correctOption")
        if correct_raw in (None, ""):
            correct_raw = item.get("correct")
        if correct_raw in (None, ""):
            correct_raw = item.get("answer")
        correct = _text(correct_raw)[:1].upper()
        if not question:
            logger.debug("MC item %d has no question text", idx)
            continue
        if len(options) < 2:
            logger.debug("MC item %d has %d options", idx, len(options))
            continue
        if not correct:
            logger.debug("MC item %d has no correct option", idx)
            continue
        results.append(SurgeQuizQuestion(
            id=create_quiz_question_id("mc", f"{question}{idx}"),
            question=question,
            type="mc",
            stage="mc",
            options=options,
            correct_option=correct,
            explanation=_text(item.get("explanation")),
        ))

    short_items = payload.get("short") if isinstance(payload.get("short"), list) else []
    for idx, item in enumerate(short_items):
        if not isinstance(item, dict):
            continue
        question = _text(item.get("question"))
        model_answer = _text(item.get("modelAnswer") or item.get("answer"))
        if not question or not model_answer:
            continue
        results.append(SurgeQuizQuestion(
            id=create_quiz_question_id("sa", f"{question}{idx}"),
            question=question,
            type="short",
            stage="harder",
            model_answer=model_answer,
            explanation=_text(item.get("explanation")),
        ))
    return results


def _segment_value(segment: str) -> str:
    return segment.split(":", 1)[1].strip() if ":" in segment else ""


def extract_quiz_questions_from_text(text: str) -> list[SurgeQuizQuestion]:
    """Parse ``◊MC: ...◊`` / ``◊SA: ...◊`` blocks, then any embedded JSON."""
    questions: list[SurgeQuizQuestion] = []
    seen: set[str] = set()

    def push(q: SurgeQuizQuestion) -> None:
        if q.id and q.id not in seen:
            seen.add(q.id)
            questions.append(q)

    for match in _BLOCK_RE.finditer(text):
        tag = match.group(1).upper()
        body = match.group(2).strip()
        segments = [s.strip() for s in body.split("||") if s.strip()]
        if not segments:
            continue
        explanation = next((_segment_value(s) for s in segments if s.upper().startswith("EXPLANATION")), "")

        if tag == "MC":
            head = segments[0]
            correct_seg = next((s for s in segments if s.upper().startswith("CORRECT")), "")
            parts = correct_seg.split(":")
            correct = parts[1].strip()[:1].upper() if len(parts) > 1 else ""
            first_option = head.find("A)")
            question = (head[:first_option] if first_option >= 0 else head).strip()
            if not question:
                continue
            options = [m.group(2).strip() for m in _OPTION_RE.finditer(head) if m.group(2).strip()]
            if not options:
                continue
            push(SurgeQuizQuestion(
                id=create_quiz_question_id("mc", question),
                question=question,
                type="mc",
                stage="mc",
                options=options[:4],
                correct_option=correct,
                explanation=explanation,
            ))
        else:
            question = segments[0]
            model_answer = next((_segment_value(s) for s in segments if s.upper().startswith("MODEL_ANSWER")), "")
            push(SurgeQuizQuestion(
                id=create_quiz_question_id("sa", question),
                question=question,
                type="short",
                stage="harder",
                model_answer=model_answer,
                explanation=explanation,
            ))

    for q in extract_quiz_questions_from_json(text):
        push(q)
    return questions


def parse_quiz_json(raw: str, stage: str) -> list[SurgeQuizQuestion]:
    """Parse a quiz payload and keep the questions for ``stage``.

    When the model answers with the other kind of question, those are
    returned instead of nothing. Payloads written as ◊-delimited blocks
    are read when no JSON questions are found.
    """
    questions = extract_quiz_questions_from_json(raw)
    if not questions:
        questions = extract_quiz_questions_from_text(raw or "")
        if questions:
            logger.info("Quiz payload had no JSON questions; read %d ◊ blocks", len(questions))
    if not questions:
        logger.error("Quiz payload parse failed; raw starts with: %r", (raw or "")[:400])
        raise QuizGenerationError("Empty quiz payload")

    filtered = [q for q in questions if q.stage == stage]
    if stage == "mc" and not filtered:
        short = [q for q in questions if q.type == "short" or q.stage == "harder"]
        if short:
            logger.warning("Got short-answer questions when MC was requested; using them as harder questions")
            return short
    if stage == "harder" and not filtered:
        mc = [q for q in questions if q.type == "mc" or q.stage == "mc"]
        if mc:
            logger.warning("Got MC questions when harder questions were requested; using them anyway")
            return mc
    return filtered


def is_similar_question(question: str, previous: str) -> bool:
    """True when two questions read as the same prompt."""
    q = question.lower().strip()
    p = previous.lower().strip()
    q_head = " ".join(q.split()[:10])
    p_head = " ".join(p.split()[:10])
    return q_head in p or p_head in q or q[:50] == p[:50]
