"""Quiz grading and question progression for Surge quizzes."""
import math
import re
import time
from typing import Optional

from surge_tutor.models import SurgeQuizQuestion, SurgeQuizResponse

MC_QUESTION_COUNT = 5
HARDER_QUESTION_COUNT = 4
CHECKER_PASS_GRADE = 8
SHORT_ANSWER_PASS_RATIO = 0.55


def _tokens(text: str) -> list[str]:
    cleaned = re.sub(r"[^a-z0-9\s]", " ", text.lower())
    return [w for w in cleaned.split() if len(w) > 3]


def evaluate_short_answer(user_answer: str, model_answer: str) -> tuple[int, Optional[bool]]:
    """Grade a short answer by word overlap with the model answer.

    Args:
        user_answer: What the student wrote.
        model_answer: The reference answer.

    Returns:
        (score 0-10, is_correct). ``is_correct`` is None when the model
        answer has no gradeable words but the student wrote something.
    """
    model_tokens = _tokens(model_answer)
    user_tokens = _tokens(user_answer)
    if not model_tokens:
        if user_tokens:
            return 7, None
        return 0, False
    unique_model = set(model_tokens)
    matches = sum(1 for token in user_tokens if token in unique_model)
    ratio = matches / len(unique_model)
    # Partial overlap gets a gentle uplift.
    boosted = max(ratio, ratio * 0.6 + 0.2)
    score = max(0, min(10, math.floor(boosted * 10 + 0.5)))
    return score, ratio >= SHORT_ANSWER_PASS_RATIO


def grade_mc_option(question: SurgeQuizQuestion, letter: str) -> tuple[int, Optional[bool]]:
    chosen = letter.strip()[:1].upper()
    correct = (question.correct_option or "").strip()[:1].upper()
    if not correct:
        return 0, None
    is_correct = chosen == correct
    return (10 if is_correct else 0), is_correct


def option_letter(index: int) -> str:
    return chr(ord("A") + index)


class QuizRun:
    """Ordered questions, recorded answers and the cursor of one quiz."""

    def __init__(self):
        self.questions: list[SurgeQuizQuestion] = []
        self.responses: dict[str, SurgeQuizResponse] = {}
        self.index = 0

    def reset(self) -> None:
        self.questions = []
        self.responses = {}
        self.index = 0

    @property
    def current(self) -> Optional[SurgeQuizQuestion]:
        if 0 <= self.index < len(self.questions):
            return self.questions[self.index]
        return None

    def stage_questions(self, stage: str) -> list[SurgeQuizQuestion]:
        return [q for q in self.questions if q.stage == stage]

    def has_stage(self, stage: str) -> bool:
        return any(q.stage == stage for q in self.questions)

    def answered_count(self, stage: str) -> int:
        return sum(1 for q in self.questions if q.stage == stage and q.id in self.responses)

    @property
    def mc_complete(self) -> bool:
        total = len(self.stage_questions("mc"))
        return total > 0 and self.answered_count("mc") >= total

    def apply_questions(self, new_questions: list[SurgeQuizQuestion], stage: str,
                        replace: bool = False, default_topic: str = "") -> bool:
        """Merge a batch of questions into the run.

        An MC batch replaces an empty run (or any run when ``replace`` is
        set). Other batches append questions with unseen ids; the first
        harder batch moves the cursor onto its first question.
        """
        if not new_questions:
            return False
        for q in new_questions:
            if not q.topic:
                q.topic = default_topic
        if stage == "mc" and (replace or not self.questions):
            self.questions = list(new_questions)
            self.responses = {}
            self.index = 0
            return True
        existing = {q.id for q in self.questions}
        additions = [q for q in new_questions if q.id not in existing]
        if not additions:
            return self.has_stage(stage)
        first_of_stage = not self.has_stage(stage)
        insertion = len(self.questions)
        self.questions.extend(additions)
        if stage == "harder" and first_of_stage:
            self.index = insertion
        return True

    def record_response(self, question: SurgeQuizQuestion, answer: str, score: int,
                        is_correct: Optional[bool], **assessment) -> SurgeQuizResponse:
        previous = self.responses.get(question.id)
        response = SurgeQuizResponse(
            answer=answer,
            is_correct=is_correct,
            stage=question.stage,
            score=score,
            submitted_at=previous.submitted_at if previous else int(time.time() * 1000),
            correct_answer=question.correct_option,
            explanation=question.explanation,
            model_answer=question.model_answer,
            **assessment,
        )
        self.responses[question.id] = response
        return response

    def _next_index(self, stage: str) -> int:
        for idx in range(self.index + 1, len(self.questions)):
            if self.questions[idx].stage == stage:
                return idx
        return -1

    def advance(self) -> str:
        """Move past the answered current question.

        Returns one of ``"waiting"`` (current question unanswered), ``"next"``,
        ``"need_harder"`` (MC done and no harder batch yet),
        ``"harder_started"``, ``"review_finished"`` or ``"finished"``.
        """
        q = self.current
        if q is None or q.id not in self.responses:
            return "waiting"

        if q.stage in ("review", "harder"):
            nxt = self._next_index(q.stage)
            if nxt != -1:
                self.index = nxt
                return "next"
            return "review_finished" if q.stage == "review" else "finished"

        nxt = self._next_index("mc")
        if nxt != -1:
            self.index = nxt
            return "next"
        harder = [i for i, x in enumerate(self.questions) if x.stage == "harder"]
        if harder:
            self.index = harder[0]
            return "harder_started"
        return "need_harder"

    def mc_summary(self) -> str:
        """Numbered listing of the MC questions, passed along when asking for harder ones."""
        lines = []
        for idx, q in enumerate(self.stage_questions("mc"), 1):
            options = " ".join(f"{option_letter(i)}) {opt}" for i, opt in enumerate(q.options))
            lines.append(f"{idx}. {q.question} {options} (Correct: {q.correct_option})")
        return "\n".join(lines)
