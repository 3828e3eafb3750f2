"""Data classes for the tutor domain model.

Stored documents keep the camelCase field names of the persisted JSON, so
each record converts with ``to_dict``/``from_dict`` at the storage boundary.
"""
from dataclasses import dataclass, field
from typing import Optional

PHASES = ("repeat", "learn", "quiz", "complete")
QUIZ_STAGES = ("mc", "harder", "review")


@dataclass
class RepeatedTopic:
    topic: str
    questions: list[dict] = field(default_factory=list)  # {question, answer, grade}
    average_score: float = 0.0

    def add_answer(self, question: str, answer: str, grade: int) -> None:
        self.questions.append({"question": question, "answer": answer, "grade": grade})
        grades = [q.get("grade") or 0 for q in self.questions]
        self.average_score = sum(grades) / len(grades)

    def to_dict(self) -> dict:
        return {"topic": self.topic, "questions": list(self.questions), "averageScore": self.average_score}

    @classmethod
    def from_dict(cls, d: dict) -> "RepeatedTopic":
        questions = d.get("questions")
        return cls(
            topic=str(d.get("topic") or ""),
            questions=[q for q in questions if isinstance(q, dict)] if isinstance(questions, list) else [],
            average_score=float(d.get("averageScore") or 0.0),
        )


@dataclass
class QuizResultRecord:
    question: str
    answer: str
    grade: float
    topic: str
    stage: str = "mc"
    question_id: Optional[str] = None
    is_correct: Optional[bool] = None
    answered_at: Optional[int] = None
    explanation: str = ""
    model_answer: str = ""

    def to_dict(self) -> dict:
        d = {
            "question": self.question,
            "answer": self.answer,
            "grade": self.grade,
            "topic": self.topic,
            "stage": self.stage,
        }
        if self.explanation:
            d["explanation"] = self.explanation
        if self.model_answer:
            d["modelAnswer"] = self.model_answer
        if self.question_id:
            d["questionId"] = self.question_id
        if self.is_correct is not None:
            d["isCorrect"] = self.is_correct
        if self.answered_at is not None:
            d["answeredAt"] = self.answered_at
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "QuizResultRecord":
        return cls(
            question=str(d.get("question") or ""),
            answer=str(d.get("answer") or ""),
            grade=float(d.get("grade") or 0),
            topic=str(d.get("topic") or ""),
            stage=d.get("stage") if d.get("stage") in QUIZ_STAGES else "mc",
            question_id=d.get("questionId"),
            is_correct=d.get("isCorrect"),
            answered_at=d.get("answeredAt"),
            explanation=str(d.get("explanation") or ""),
            model_answer=str(d.get("modelAnswer") or ""),
        )


@dataclass
class StageTransition:
    from_stage: str
    to_stage: str
    timestamp: int
    topic: str = ""

    def to_dict(self) -> dict:
        return {"from": self.from_stage, "to": self.to_stage, "timestamp": self.timestamp, "topic": self.topic}

    @classmethod
    def from_dict(cls, d: dict) -> "StageTransition":
        return cls(
            from_stage=str(d.get("from") or ""),
            to_stage=str(d.get("to") or ""),
            timestamp=int(d.get("timestamp") or 0),
            topic=str(d.get("topic") or ""),
        )


@dataclass
class SurgeLogEntry:
    session_id: str
    timestamp: int
    new_topic: str = ""
    new_topic_lesson: str = ""
    summary: str = ""
    repeated_topics: list[RepeatedTopic] = field(default_factory=list)
    quiz_results: list[QuizResultRecord] = field(default_factory=list)
    quiz_stage_transitions: list[StageTransition] = field(default_factory=list)
    mc_stage_completed_at: Optional[int] = None

    @property
    def is_complete(self) -> bool:
        return "(In Progress)" not in self.summary

    def to_dict(self) -> dict:
        d = {
            "sessionId": self.session_id,
            "timestamp": self.timestamp,
            "repeatedTopics": [rt.to_dict() for rt in self.repeated_topics],
            "newTopic": self.new_topic,
            "newTopicLesson": self.new_topic_lesson,
            "quizResults": [qr.to_dict() for qr in self.quiz_results],
            "summary": self.summary,
        }
        if self.quiz_stage_transitions:
            d["quizStageTransitions"] = [t.to_dict() for t in self.quiz_stage_transitions]
        if self.mc_stage_completed_at is not None:
            d["mcStageCompletedAt"] = self.mc_stage_completed_at
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "SurgeLogEntry":
        return cls(
            session_id=str(d.get("sessionId") or ""),
            timestamp=int(d.get("timestamp") or 0),
            new_topic=str(d.get("newTopic") or ""),
            new_topic_lesson=str(d.get("newTopicLesson") or ""),
            summary=str(d.get("summary") or ""),
            repeated_topics=[RepeatedTopic.from_dict(x) for x in d.get("repeatedTopics") or [] if isinstance(x, dict)],
            quiz_results=[QuizResultRecord.from_dict(x) for x in d.get("quizResults") or [] if isinstance(x, dict)],
            quiz_stage_transitions=[
                StageTransition.from_dict(x) for x in d.get("quizStageTransitions") or [] if isinstance(x, dict)
            ],
            mc_stage_completed_at=d.get("mcStageCompletedAt"),
        )


@dataclass
class ReviewSchedule:
    topic: str
    lesson_index: int
    last_reviewed: int
    next_review: int
    interval: float = 1
    ease_factor: float = 2.5
    review_count: int = 0

    @property
    def key(self) -> str:
        return f"{self.topic}-{self.lesson_index}"

    def to_dict(self) -> dict:
        return {
            "topicName": self.topic,
            "lessonIndex": self.lesson_index,
            "lastReviewed": self.last_reviewed,
            "nextReview": self.next_review,
            "interval": self.interval,
            "ease": self.ease_factor,
            "reviews": self.review_count,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "ReviewSchedule":
        return cls(
            topic=str(d.get("topicName") or ""),
            lesson_index=int(d.get("lessonIndex") or 0),
            last_reviewed=int(d.get("lastReviewed") or 0),
            next_review=int(d.get("nextReview") or 0),
            interval=d.get("interval", 1),
            ease_factor=float(d.get("ease", 2.5)),
            review_count=int(d.get("reviews") or 0),
        )


@dataclass
class PracticeLogEntry:
    id: str
    timestamp: int
    topic: str
    question: str
    answer: str
    assessment: str = ""
    grade: int = 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "topic": self.topic,
            "question": self.question,
            "answer": self.answer,
            "assessment": self.assessment,
            "grade": self.grade,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "PracticeLogEntry":
        return cls(
            id=str(d.get("id") or ""),
            timestamp=int(d.get("timestamp") or 0),
            topic=str(d.get("topic") or "General"),
            question=str(d.get("question") or ""),
            answer=str(d.get("answer") or ""),
            assessment=str(d.get("assessment") or ""),
            grade=int(d.get("grade") or 0),
        )


@dataclass
class SurgeQuizQuestion:
    id: str
    question: str
    type: str  # "mc" or "short"
    stage: str  # "mc", "harder" or "review"
    options: list[str] = field(default_factory=list)
    correct_option: str = ""
    explanation: str = ""
    model_answer: str = ""
    topic: str = ""


@dataclass
class SurgeQuizResponse:
    answer: str
    is_correct: Optional[bool]
    stage: str
    score: int
    submitted_at: int
    correct_answer: str = ""
    explanation: str = ""
    model_answer: str = ""
    assessment: str = ""
    whats_good: str = ""
    whats_bad: str = ""
    enhanced_explanation: str = ""
    checked: bool = False
