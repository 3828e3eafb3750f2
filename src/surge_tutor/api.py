"""Tutoring request handlers: validate input, build a prompt, call the model."""
import logging
import os
import time
from typing import Iterator, Optional

from surge_tutor import prompts
from surge_tutor.config import Settings
from surge_tutor.errors import LLMError, ValidationError
from surge_tutor.llm import StreamEvent, complete, complete_json, parse_json_object, stream_chat

logger = logging.getLogger(__name__)

QUICK_EXPLAIN_TOPICS = 100
NODE_LESSON_TOPICS = 200
SURGE_CONTEXT_CHARS = 50_000
SURGE_LESSON_CHARS = 20_000
CHAT_CONTEXT_CHARS = 12_000
FLASHCARD_COUNTS = (3, 5, 7, 9)
DEFAULT_FLASHCARD_COUNT = 5
QUICK_LEARN_SUBJECTS = ("quick learn", "quicklearn")
MC_LETTERS = "ABCD"
MC_CORRECT_GRADE = 10
MC_INCORRECT_GRADE = 3


def _clamp_grade(value) -> int:
    try:
        grade = int(float(value))
    except (TypeError, ValueError):
        return 0
    return max(0, min(10, grade))


def quick_explain(settings: Settings, subject: str, topic: str, word: str,
                  local_context: str = "", course_topics: Optional[list[str]] = None,
                  language_name: str = "", client=None) -> dict:
    word = (word or "").strip()
    if not word:
        raise ValidationError("Missing word")
    system, user = prompts.quick_explain_prompts(
        subject, topic, word, local_context or "",
        list(course_topics or [])[:QUICK_EXPLAIN_TOPICS], language_name,
    )
    content = complete(settings, system, user, temperature=0.4, max_tokens=220, client=client)
    return {"ok": True, "content": content}


def _lesson_target(lessons_meta: list[dict], lesson_index: int, default_type: str) -> dict:
    if 0 <= lesson_index < len(lessons_meta) and isinstance(lessons_meta[lesson_index], dict):
        return lessons_meta[lesson_index]
    return {"type": default_type, "title": f"Lesson {lesson_index + 1}"}


def node_lesson(settings: Settings, subject: str, topic: str, lessons_meta: list[dict],
                lesson_index: int = 0, course_context: str = "", combined_text: str = "",
                topic_summary: str = "", previous_lessons: Optional[list[dict]] = None,
                generated_lessons: Optional[list[dict]] = None, course_topics: Optional[list[str]] = None,
                language_name: str = "", mode: Optional[str] = None, client=None) -> dict:
    """Generate one lesson of a topic as JSON ``{title, body, quiz}``."""
    if not topic or not lessons_meta:
        raise ValidationError("Missing topic or lessonsMeta")
    target = _lesson_target(lessons_meta, lesson_index, "Concept")
    others = [m for i, m in enumerate(lessons_meta) if i != lesson_index]
    system, user = prompts.node_lesson_prompts(
        subject, topic, course_context, combined_text, topic_summary, target,
        previous_lessons or [], generated_lessons or [], others,
        list(course_topics or [])[:NODE_LESSON_TOPICS], language_name, mode or "",
    )
    raw = complete(settings, system, user, model=settings.lesson_model, temperature=0.35,
                   max_tokens=1600, json_mode=True, client=client)
    return {"ok": True, "data": parse_json_object(raw), "raw": raw}


def node_lesson_stream(settings: Settings, subject: str, topic: str,
                       lessons_meta: Optional[list[dict]] = None, lesson_index: int = 0,
                       course_context: str = "", combined_text: str = "", topic_summary: str = "",
                       previous_lessons: Optional[list[dict]] = None,
                       generated_lessons: Optional[list[dict]] = None,
                       course_topics: Optional[list[str]] = None, language_name: str = "",
                       mode: Optional[str] = None, client=None) -> Iterator[StreamEvent]:
    """Stream a long Markdown lesson.

    Quick Learn subjects teach the topic standalone and need no lesson plan.
    Validation happens before the first event is produced.
    """
    quick_learn = (subject or "").strip().lower() in QUICK_LEARN_SUBJECTS
    if not topic:
        raise ValidationError("Missing topic")
    if quick_learn and not lessons_meta:
        lessons_meta = [{"type": "Quick Learn", "title": topic}]
    if not lessons_meta:
        raise ValidationError("Missing topic or lessonsMeta")
    target = _lesson_target(lessons_meta, lesson_index, "Full Lesson")
    others = [m for i, m in enumerate(lessons_meta) if i != lesson_index]
    system, user = prompts.node_lesson_stream_prompts(
        subject, topic, course_context, combined_text, topic_summary, target,
        previous_lessons or [], generated_lessons or [], others,
        list(course_topics or [])[:NODE_LESSON_TOPICS], language_name, mode or "", quick_learn,
    )
    messages = [{"role": "system", "content": system}, {"role": "user", "content": user}]
    return stream_chat(settings, messages, model=settings.lesson_model, temperature=0.5,
                       max_tokens=12000, client=client)


def _looks_like_quiz_json(text: str) -> bool:
    stripped = text.lstrip()
    return stripped.startswith("{") and any(f'"{key}"' in text for key in ("mc", "short", "questions"))


def _looks_like_lesson(text: str) -> bool:
    stripped = text.lstrip()
    return stripped.startswith("#") or "##" in text or (len(text) > 500 and "question" not in text.lower())


def surge_quiz(settings: Settings, stage: str, course_name: str, topic_name: str, context: str,
               lesson_content: str = "", mc_questions: str = "",
               debug_instruction: Optional[str] = None, client=None) -> dict:
    """Ask for the MC or harder batch of a Surge quiz as raw JSON text."""
    stage = "harder" if stage == "harder" else "mc"
    if not course_name or not topic_name or not context:
        raise ValidationError("Missing courseName, topicName, or context")

    clipped = context[:SURGE_CONTEXT_CHARS]
    marker = clipped.find("COURSE CONTEXT - CRITICAL")
    if marker >= 0:
        clipped = clipped[marker:]
    if lesson_content:
        clipped += ("\n\n====================\nCURRENT LESSON CONTENT (use for quiz questions)\n"
                    "====================\n" + lesson_content[:SURGE_LESSON_CHARS])
    if stage == "harder" and mc_questions:
        clipped += ("\n\n====================\nPREVIOUS MC QUESTIONS (DO NOT duplicate - go deeper)\n"
                    "====================\n" + mc_questions)

    instructions = prompts.build_quiz_json_instruction(stage, course_name, topic_name,
                                                       mc_questions, debug_instruction)
    temperature, max_tokens = (0.5, 1000) if stage == "mc" else (0.7, 1200)
    try:
        raw = complete(settings, instructions, clipped.strip() or "No additional context.",
                       temperature=temperature, max_tokens=max_tokens, client=client)
    except LLMError as e:
        if "empty" in str(e).lower():
            raise LLMError("Quiz generation returned empty content") from e
        raise

    if _looks_like_lesson(raw) and not _looks_like_quiz_json(raw):
        logger.error("Quiz request returned lesson text (%d chars) for stage %s", len(raw), stage)
        raise LLMError("Quiz generation returned lesson content instead of quiz JSON. Please try again.")
    logger.debug("Quiz %s payload: %d chars", stage, len(raw))
    return {"ok": True, "raw": raw, "stage": stage}


def surge_quiz_check(settings: Settings, question: str, answer: str, model_answer: str,
                     explanation: str = "", topic: str = "", lesson_content: str = "",
                     client=None) -> dict:
    """Grade a short answer against its model answer on a 0-10 scale."""
    if not question or not answer or not model_answer:
        raise ValidationError("Missing required fields: question, answer, modelAnswer")
    user = prompts.surge_check_user_prompt(question, answer, model_answer, explanation, lesson_content)
    result = complete_json(settings, prompts.SURGE_CHECK_SYSTEM, user, temperature=0.4, client=client)
    logger.debug("Graded answer for topic %r: %s", topic, result.get("grade"))
    return {
        "success": True,
        "grade": _clamp_grade(result.get("grade")),
        "assessment": str(result.get("assessment") or ""),
        "whatsGood": str(result.get("whatsGood") or ""),
        "whatsBad": str(result.get("whatsBad") or ""),
        "enhancedExplanation": str(result.get("enhancedExplanation") or model_answer),
    }


def chat_stream(settings: Settings, messages: list[dict], context: str = "", path: str = "",
                system: Optional[str] = None, client=None) -> Iterator[StreamEvent]:
    """Tutor chat over the page context; ``system`` replaces the default persona."""
    full = [{"role": "system", "content": system or prompts.NOVA_SYSTEM}]
    full.append({
        "role": "user",
        "content": f"Current page: {path or '/'}\n\nCONTEXT:\n{(context or '')[:CHAT_CONTEXT_CHARS]}",
    })
    full.extend(m for m in messages if isinstance(m, dict) and m.get("content"))
    return stream_chat(settings, full, temperature=0.3, max_tokens=600, client=client)


def lesson_flashcards(settings: Settings, lesson_body: str, subject: str = "", topic: str = "",
                      lesson_title: str = "", course_context: str = "", language_name: str = "",
                      count: int = DEFAULT_FLASHCARD_COUNT, client=None) -> dict:
    if not (lesson_body or "").strip():
        raise ValidationError("Missing lesson content")
    if count not in FLASHCARD_COUNTS:
        count = DEFAULT_FLASHCARD_COUNT
    system, user = prompts.flashcard_prompts(subject, topic, lesson_title, lesson_body,
                                             course_context, language_name, count)
    raw = complete(settings, system, user, model=settings.lesson_model, temperature=0.6,
                   max_tokens=2000, json_mode=True, client=client)
    cards = parse_json_object(raw).get("flashcards")
    flashcards = []
    for card in cards if isinstance(cards, list) else []:
        if not isinstance(card, dict):
            continue
        prompt = str(card.get("prompt") or "").strip()
        answer = str(card.get("answer") or "").strip()
        if prompt and answer:
            flashcards.append({"prompt": prompt, "answer": answer})
    return {"ok": True, "flashcards": flashcards, "raw": raw}


def _valid_mc_question(q) -> bool:
    if not isinstance(q, dict) or not q.get("question"):
        return False
    options = q.get("options")
    correct = q.get("correctAnswer")
    return (
        isinstance(options, list) and len(options) == 4
        and isinstance(correct, int) and not isinstance(correct, bool)
        and 0 <= correct <= 3
    )


def generate_mc_quiz(settings: Settings, lesson_content: str, subject: str = "", topic: str = "",
                     course_context: str = "", language_name: str = "", client=None) -> dict:
    if not lesson_content:
        raise ValidationError("Missing lesson content")
    system, user = prompts.mc_quiz_prompts(subject, topic, lesson_content, course_context, language_name)
    raw = complete(settings, system, user, model=settings.lesson_model, temperature=0.9,
                   json_mode=True, client=client)
    questions = parse_json_object(raw).get("questions")
    if not isinstance(questions, list) or not questions:
        raise LLMError("Failed to generate quiz questions")
    valid = [q for q in questions if _valid_mc_question(q)]
    if not valid:
        raise LLMError("Generated questions were invalid")
    return {"ok": True, "questions": valid}


def _log_entry_id() -> str:
    return f"{int(time.time() * 1000)}-{os.urandom(4).hex()}"


def _topic_for_question(settings: Settings, question: str, course_slug: str,
                        existing_logs: list[dict], client=None) -> str:
    try:
        result = complete_json(settings, prompts.PRACTICE_TOPIC_SYSTEM,
                               prompts.practice_topic_prompt(question, course_slug, existing_logs),
                               temperature=0.2, client=client)
    except LLMError as e:
        logger.warning("Topic detection failed, using General: %s", e)
        return "General"
    return str(result.get("topic") or "").strip() or "General"


def practice_logger(settings: Settings, question: str, answer: str, course_slug: str,
                    existing_logs: Optional[list[dict]] = None, mc: Optional[dict] = None,
                    client=None) -> dict:
    """Grade one practice answer into a practice-log entry.

    ``mc`` carries ``selected`` and ``correct`` option letters; MC answers are
    graded without the model, which then only names the topic. Free text
    that is not an answer attempt comes back with ``skipped`` set.
    """
    if not question or not answer or not course_slug:
        raise ValidationError("Missing required fields: question, answer, courseSlug")
    existing_logs = list(existing_logs or [])
    timestamp = int(time.time() * 1000)

    selected = str((mc or {}).get("selected") or "").strip().upper()[:1]
    correct = str((mc or {}).get("correct") or "").strip().upper()[:1]
    if selected in MC_LETTERS and correct in MC_LETTERS and selected and correct:
        is_correct = selected == correct
        topic = _topic_for_question(settings, question, course_slug, existing_logs, client=client)
        assessment = ("Correct multiple-choice answer." if is_correct
                      else f"Incorrect multiple-choice answer. Correct: {correct}.")
        return {
            "success": True,
            "logEntry": {
                "id": _log_entry_id(),
                "timestamp": timestamp,
                "topic": topic,
                "question": question,
                "answer": f"MC selected: {selected}",
                "assessment": assessment,
                "grade": MC_CORRECT_GRADE if is_correct else MC_INCORRECT_GRADE,
                "result": "correct" if is_correct else "incorrect",
                "questions": 1,
            },
        }

    verdict = complete_json(settings, prompts.ANSWER_CLASSIFIER_SYSTEM,
                            prompts.answer_classifier_prompt(question, answer),
                            temperature=0.8, client=client)
    if not verdict.get("isAnswerAttempt"):
        reason = verdict.get("reason") or "Message is not an answer attempt"
        logger.debug("Skipped practice log: %s", reason)
        return {"success": False, "skipped": True, "reason": reason}

    graded = complete_json(settings, prompts.PRACTICE_GRADER_SYSTEM,
                           prompts.practice_grader_prompt(question, answer, existing_logs),
                           temperature=0.4, client=client)
    return {
        "success": True,
        "logEntry": {
            "id": _log_entry_id(),
            "timestamp": timestamp,
            "topic": str(graded.get("topic") or "General"),
            "question": str(graded.get("question") or question),
            "answer": str(graded.get("answer") or answer),
            "assessment": str(graded.get("assessment") or ""),
            "grade": _clamp_grade(graded.get("grade")),
        },
    }
