"""Surge session controller: review, learn a new topic, then take its quiz."""
import logging
import os
import random
import re
from datetime import datetime
from typing import Iterator, Optional

from surge_tutor import api
from surge_tutor.config import Settings
from surge_tutor.errors import LLMError, QuizGenerationError
from surge_tutor.models import (
    PracticeLogEntry,
    QuizResultRecord,
    RepeatedTopic,
    StageTransition,
    SurgeLogEntry,
    SurgeQuizQuestion,
    SurgeQuizResponse,
)
from surge_tutor.parsing import TOPIC_SUGGESTION_TARGET, extract_topic_suggestions, is_similar_question, parse_quiz_json
from surge_tutor.phase import (
    LessonStreamed,
    PhaseSelected,
    PhaseState,
    QuizFinished,
    QuizStarted,
    ReviewFinished,
    SessionLoaded,
    SessionResumed,
    TopicChosen,
    days_since,
    reduce_phase,
)
from surge_tutor.prompts import (
    TOPIC_SUGGESTION_SYSTEM_MESSAGE,
    build_surge_context,
    course_language,
    review_harder_instruction,
    review_mc_instruction,
)
from surge_tutor.quiz import (
    CHECKER_PASS_GRADE,
    HARDER_QUESTION_COUNT,
    MC_QUESTION_COUNT,
    QuizRun,
    evaluate_short_answer,
    grade_mc_option,
)
from surge_tutor.review import all_topics_reviewed, collect_log_topics, previous_questions
from surge_tutor.storage import (
    IN_PROGRESS_MARKER,
    append_practice_log_entry,
    find_in_progress_session,
    get_last_surge_session,
    get_reviewed_topics,
    get_surge_log,
    load_practice_log,
    load_subject_data,
    mark_topics_reviewed,
    now_ms,
    persist_surge_lesson,
    upsert_surge_log_entry,
)

logger = logging.getLogger(__name__)

REVIEW_QUESTIONS_PER_STAGE = 2
_QUESTION_MARK_RE = re.compile(r"◊([^◊]+)◊")


def new_session_id() -> str:
    return f"{now_ms()}-{os.urandom(6).hex()}"


class SurgeSession:
    """One Surge sitting for a course.

    Progress is written to the course's Surge log after every graded
    answer, so a session interrupted at any point resumes under the
    same id the next time it is opened.
    """

    def __init__(self, db_path: str, slug: str, settings: Settings,
                 now: Optional[datetime] = None, exam_snipe_data: Optional[str] = None, client=None):
        self.db_path = db_path
        self.slug = slug
        self.settings = settings
        self.now = now
        self.exam_snipe_data = exam_snipe_data
        self.client = client
        self.state = PhaseState()
        self.run = QuizRun()
        self.suggested_topics: list[str] = []

        self.repeated_topics: list[RepeatedTopic] = []
        self.new_topic = ""
        self.new_topic_lesson = ""
        self.quiz_results: list[QuizResultRecord] = []
        self.stage_transitions: list[StageTransition] = []
        self.mc_stage_completed_at: Optional[int] = None
        self._lesson_signature: Optional[str] = None
        self._review_topics: list[str] = []

        resumed = find_in_progress_session(db_path, slug)
        if resumed:
            logger.info("Resuming in-progress Surge session %s", resumed.session_id)
            self.session_id = resumed.session_id
            self.repeated_topics = resumed.repeated_topics
            self.new_topic = resumed.new_topic
            self.new_topic_lesson = resumed.new_topic_lesson
            self.quiz_results = resumed.quiz_results
            self.stage_transitions = resumed.quiz_stage_transitions
            self.mc_stage_completed_at = resumed.mc_stage_completed_at
            self.state = reduce_phase(self.state, SessionResumed(self.new_topic, bool(self.new_topic_lesson)))
        else:
            self.session_id = new_session_id()
            logger.debug("Created Surge session %s", self.session_id)
        self.load()

    # Loading and phase

    def load(self) -> None:
        self.data = load_subject_data(self.db_path, self.slug)
        self.practice_log = load_practice_log(self.db_path, self.slug)
        self.log = get_surge_log(self.db_path, self.slug)
        self.last_surge = get_last_surge_session(self.db_path, self.slug)
        last_ts = self.last_surge.timestamp if self.last_surge else None
        self.state = reduce_phase(self.state, SessionLoaded(
            days_since_last=days_since(last_ts, self.now),
            has_history=bool(self.log),
            all_reviewed=all_topics_reviewed(self.db_path, self.slug),
        ))

    @property
    def phase(self) -> str:
        return self.state.phase

    @property
    def topic(self) -> str:
        return self.state.topic or self.new_topic

    @property
    def course_name(self) -> str:
        return (self.data or {}).get("subject") or self.slug

    def select_phase(self, phase: str) -> None:
        self.state = reduce_phase(self.state, PhaseSelected(phase))

    def context(self, phase: Optional[str] = None, topic: Optional[str] = None) -> str:
        return build_surge_context(
            self.slug, self.data, self.practice_log, self.last_surge, self.exam_snipe_data,
            phase or self.phase, self.topic if topic is None else topic,
        )

    # Repeat phase

    def welcome_needed(self) -> bool:
        return not self.log

    def topics_to_review(self) -> list[str]:
        reviewed = get_reviewed_topics(self.db_path, self.slug)
        topics = collect_log_topics(self.log, (self.data or {}).get("subject") or "",
                                    exclude_session_id=self.session_id)
        return [t for t in topics if not reviewed.get(t)]

    def _lesson_for_topic(self, topic: str) -> str:
        for entry in self.log:
            if entry.new_topic == topic and entry.new_topic_lesson:
                return entry.new_topic_lesson
        return ""

    def _review_batch(self, topic: str, stage: str, previous: list[str]) -> list[SurgeQuizQuestion]:
        instruction = (review_mc_instruction if stage == "mc" else review_harder_instruction)(topic, len(previous))
        payload = api.surge_quiz(
            self.settings, stage, self.course_name, topic, self.context("repeat", topic),
            lesson_content=self._lesson_for_topic(topic),
            mc_questions="\n".join(previous), debug_instruction=instruction, client=self.client,
        )
        fresh = [q for q in parse_quiz_json(payload["raw"], stage)
                 if not any(is_similar_question(q.question, p) for p in previous)]
        picked = fresh[:REVIEW_QUESTIONS_PER_STAGE]
        for q in picked:
            q.topic = topic
        return picked

    def request_review_questions(self) -> list[SurgeQuizQuestion]:
        """Two MC and two short questions per unreviewed topic, topics in random order."""
        topics = self.topics_to_review()
        if not topics:
            return []
        previous = previous_questions(self.log)
        by_topic: dict[str, list[SurgeQuizQuestion]] = {}
        for topic in topics:
            questions: list[SurgeQuizQuestion] = []
            for stage in ("mc", "harder"):
                try:
                    batch = self._review_batch(topic, stage, previous)
                except LLMError as e:
                    logger.warning("Review %s questions for %r failed: %s", stage, topic, e)
                    continue
                previous.extend(q.question for q in batch)
                questions.extend(batch)
            if questions:
                by_topic[topic] = questions

        if not by_topic:
            raise QuizGenerationError("No review questions returned")
        order = list(by_topic)
        random.shuffle(order)
        review = []
        for topic in order:
            for q in by_topic[topic]:
                q.stage = "review"
                review.append(q)
        self._review_topics = order
        self.run.reset()
        self.run.questions = review
        logger.info("Prepared %d review questions across %d topics", len(review), len(order))
        return review

    def finish_review(self) -> None:
        topics = {q.topic for q in self.run.stage_questions("review") if q.topic} or set(self._review_topics)
        mark_topics_reviewed(self.db_path, self.slug, sorted(topics), settings=self.settings)
        self.run.reset()
        self.state = reduce_phase(self.state, ReviewFinished())
        self.load()

    def _fold_repeated(self, topic: str, question: str, answer: str, grade: int) -> None:
        existing = next((rt for rt in self.repeated_topics if rt.topic == topic), None)
        if existing is None:
            existing = RepeatedTopic(topic=topic)
            self.repeated_topics.append(existing)
        existing.questions = [q for q in existing.questions if q.get("question") != question]
        existing.add_answer(question, answer, grade)
        self.save_current_session(False)

    def practice_question(self) -> str:
        """Ask the tutor for one practice question on past topics; returns its text."""
        messages = [{"role": "user", "content": "Ask me one practice question about the topics from my last "
                                                "Surge session. Wrap the question in ◊ characters."}]
        text = ""
        for event in api.chat_stream(self.settings, messages, context=self.context("repeat"),
                                     path=f"/subjects/{self.slug}/surge", client=self.client):
            if event.type == "error":
                raise LLMError(event.error)
            text += event.content
        match = _QUESTION_MARK_RE.search(text)
        return match.group(1).strip() if match else text.strip()

    def log_practice_answer(self, question: str, answer: str) -> Optional[PracticeLogEntry]:
        """Grade a free-form practice answer and fold it into the session.

        Returns None when the message was not an answer attempt.
        """
        result = api.practice_logger(
            self.settings, question, answer, self.slug,
            existing_logs=[e.to_dict() for e in self.practice_log], client=self.client,
        )
        if not result.get("success"):
            logger.debug("Practice answer not logged: %s", result.get("reason"))
            return None
        entry = PracticeLogEntry.from_dict(result["logEntry"])
        self.practice_log = append_practice_log_entry(self.db_path, self.slug, entry)
        if self.phase == "repeat":
            self._fold_repeated(entry.topic, entry.question, entry.answer, entry.grade)
        return entry

    # Learn phase

    def suggest_topics(self) -> list[str]:
        """Stream topic suggestions, stopping as soon as four distinct ones arrive."""
        messages = [{"role": "system", "content": TOPIC_SUGGESTION_SYSTEM_MESSAGE}]
        text = ""
        topics: list[str] = []
        stream = api.chat_stream(self.settings, messages, context=self.context("learn", ""),
                                 path=f"/subjects/{self.slug}/surge", client=self.client)
        for event in stream:
            if event.type == "error":
                raise LLMError(event.error)
            if event.type != "text":
                continue
            text += event.content
            # Only complete lines; the last one may still be growing.
            topics = extract_topic_suggestions(text[:text.rfind("\n") + 1], TOPIC_SUGGESTION_TARGET)
            if len(topics) >= TOPIC_SUGGESTION_TARGET:
                logger.debug("Got %d topics mid-stream", len(topics))
                break
        if len(topics) < TOPIC_SUGGESTION_TARGET:
            topics = extract_topic_suggestions(text, TOPIC_SUGGESTION_TARGET)
        if not topics:
            logger.warning("No topic suggestions in model output: %r", text[:200])
        self.suggested_topics = topics
        return topics

    def choose_topic(self, topic: str) -> None:
        topic = topic.strip()
        self.state = reduce_phase(self.state, TopicChosen(topic))
        self.new_topic = topic
        self.new_topic_lesson = ""
        self._lesson_signature = None
        self.run.reset()

    def stream_lesson(self) -> Iterator[str]:
        """Yield the lesson as it streams; it is saved to the course once done."""
        if not self.topic:
            raise QuizGenerationError("No topic chosen")
        data = self.data or {}
        topics = [t.get("name") for t in data.get("topics") or [] if isinstance(t, dict) and t.get("name")]
        events = api.node_lesson_stream(
            self.settings,
            subject=data.get("subject") or self.slug,
            topic=self.topic,
            lessons_meta=[{"type": "Full Lesson", "title": self.topic}],
            lesson_index=0,
            course_context=data.get("course_context") or "",
            combined_text=data.get("combinedText") or "",
            course_topics=topics,
            language_name=course_language(data) or "",
            client=self.client,
        )
        lesson = ""
        for event in events:
            if event.type == "error":
                raise LLMError(event.error)
            if event.type == "text":
                lesson += event.content
                yield event.content
        self.new_topic_lesson = lesson
        self.state = reduce_phase(self.state, LessonStreamed())
        signature = persist_surge_lesson(self.db_path, self.slug, self.session_id, self.topic, lesson,
                                         settings=self.settings, last_signature=self._lesson_signature)
        if signature:
            self._lesson_signature = signature
        self.save_current_session(False)

    # Quiz phase

    def start_quiz(self) -> list[SurgeQuizQuestion]:
        self.state = reduce_phase(self.state, QuizStarted())
        if self.phase != "quiz":
            return []
        if self.mc_stage_completed_at is not None:
            # MC was finished before an interruption; a new harder batch replaces the old harder answers.
            self.quiz_results = [r for r in self.quiz_results if r.stage != "harder"]
            return self.request_quiz_questions("harder")
        self.quiz_results = [r for r in self.quiz_results if r.stage != "mc"]
        return self.request_quiz_questions("mc")

    def _record_transition(self, from_stage: str, to_stage: str) -> None:
        ts = now_ms()
        self.stage_transitions.append(StageTransition(from_stage, to_stage, ts, self.topic))
        if from_stage == "mc" and to_stage == "harder":
            self.mc_stage_completed_at = ts

    def request_quiz_questions(self, stage: str, debug_instruction: Optional[str] = None) -> list[SurgeQuizQuestion]:
        mc_listing = self.run.mc_summary() if stage == "harder" else ""
        payload = api.surge_quiz(
            self.settings, stage, self.course_name, self.topic, self.context(),
            lesson_content=self.new_topic_lesson, mc_questions=mc_listing,
            debug_instruction=debug_instruction, client=self.client,
        )
        questions = parse_quiz_json(payload["raw"], stage)
        actual_stage = stage
        if stage == "mc" and questions and (questions[0].type == "short" or questions[0].stage == "harder"):
            logger.info("Got short-answer questions for an MC request; using them as harder questions")
            actual_stage = "harder"
            for q in questions:
                q.stage = "harder"
        if not questions:
            raise QuizGenerationError("No quiz questions returned")
        questions = questions[:MC_QUESTION_COUNT if actual_stage == "mc" else HARDER_QUESTION_COUNT]
        applied = self.run.apply_questions(questions, actual_stage, replace=actual_stage == "mc",
                                           default_topic=self.topic)
        if not applied:
            logger.warning("Quiz response had no new questions; keeping the current set")
        if actual_stage == "harder" and self.mc_stage_completed_at is None:
            self._record_transition("mc", "harder")
        return questions

    def _record_answer(self, question: SurgeQuizQuestion, answer: str, score: int,
                       is_correct: Optional[bool], **assessment) -> SurgeQuizResponse:
        response = self.run.record_response(question, answer, score, is_correct, **assessment)
        if question.stage == "review":
            self._fold_repeated(question.topic or "Unknown Topic", question.question, answer, score)
            return response
        record = QuizResultRecord(
            question=question.question,
            answer=answer,
            grade=score,
            topic=question.topic or self.topic or self.course_name or "Unknown Topic",
            stage=question.stage,
            question_id=question.id,
            is_correct=is_correct,
            answered_at=response.submitted_at,
            explanation=assessment.get("enhanced_explanation") or question.explanation or question.model_answer,
            model_answer=question.model_answer,
        )
        idx = next((i for i, r in enumerate(self.quiz_results)
                    if r.question == question.question and r.stage == question.stage), -1)
        if idx >= 0:
            self.quiz_results[idx] = record
        else:
            self.quiz_results.append(record)
        self.save_current_session(False)
        return response

    def answer_mc(self, letter: str) -> SurgeQuizResponse:
        question = self.run.current
        if question is None:
            raise QuizGenerationError("No question to answer")
        score, is_correct = grade_mc_option(question, letter)
        return self._record_answer(question, letter.strip()[:1].upper(), score, is_correct)

    def answer_short(self, text: str, use_checker: bool = True) -> SurgeQuizResponse:
        """Grade a written answer with the grader model, or by word overlap."""
        question = self.run.current
        if question is None:
            raise QuizGenerationError("No question to answer")
        if use_checker and question.model_answer and text.strip():
            try:
                result = api.surge_quiz_check(
                    self.settings, question.question, text, question.model_answer,
                    explanation=question.explanation, topic=question.topic or self.topic,
                    lesson_content=self.new_topic_lesson or self._lesson_for_topic(question.topic),
                    client=self.client,
                )
            except LLMError as e:
                logger.warning("Answer check failed, grading by overlap: %s", e)
            else:
                return self._record_answer(
                    question, text, result["grade"], result["grade"] >= CHECKER_PASS_GRADE,
                    assessment=result["assessment"],
                    whats_good=result["whatsGood"],
                    whats_bad=result["whatsBad"],
                    enhanced_explanation=result["enhancedExplanation"],
                    checked=True,
                )
        score, is_correct = evaluate_short_answer(text, question.model_answer)
        return self._record_answer(question, text, score, is_correct)

    def next_question(self) -> str:
        """Move past the current question and return what happened.

        ``"finished"`` means the last harder question was answered and the
        session has been saved as complete.
        """
        outcome = self.run.advance()
        if outcome == "need_harder":
            self.request_quiz_questions("harder")
            outcome = "harder_started" if self.run.current and self.run.current.stage == "harder" else outcome
        elif outcome == "harder_started" and self.mc_stage_completed_at is None:
            self._record_transition("mc", "harder")
        elif outcome == "review_finished":
            self.finish_review()
        elif outcome == "finished":
            self.state = reduce_phase(self.state, QuizFinished())
            self.save_current_session(True)
        return outcome

    # Persistence

    def summary(self, is_complete: bool) -> str:
        reviewed = (", ".join(f"{rt.topic} (avg: {rt.average_score:.1f}/10)" for rt in self.repeated_topics)
                    or "No previous topics")
        if self.quiz_results:
            avg = f"{sum(r.grade for r in self.quiz_results) / len(self.quiz_results):.1f}"
        else:
            avg = "N/A"
        text = (f"Last Surge session reviewed: {reviewed}. New topic introduced: {self.topic}. "
                f"Quiz results: {len(self.quiz_results)} questions with average score {avg}/10.")
        if self.mc_stage_completed_at:
            text += " MC quiz completed before moving to harder questions."
        if not is_complete:
            text += " " + IN_PROGRESS_MARKER
        return text

    def save_current_session(self, is_complete: bool = False) -> SurgeLogEntry:
        entry = SurgeLogEntry(
            session_id=self.session_id,
            timestamp=now_ms(),
            new_topic=self.topic,
            new_topic_lesson=self.new_topic_lesson,
            summary=self.summary(is_complete),
            repeated_topics=list(self.repeated_topics),
            quiz_results=list(self.quiz_results),
            quiz_stage_transitions=list(self.stage_transitions),
            mc_stage_completed_at=self.mc_stage_completed_at,
        )
        saved = upsert_surge_log_entry(self.db_path, self.slug, entry, settings=self.settings)
        logger.debug("Saved Surge session %s (%s)", self.session_id, "complete" if is_complete else "in progress")
        return saved
