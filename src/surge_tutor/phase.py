"""Phase transitions for a Surge session.

A session walks repeat -> learn -> quiz -> complete. ``reduce_phase`` is the
only place the phase changes; the controller feeds it events.
"""
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Optional, Union

from surge_tutor.models import PHASES


@dataclass(frozen=True)
class PhaseState:
    phase: str = "repeat"
    user_override: bool = False
    topic: str = ""
    lesson_started: bool = False


@dataclass(frozen=True)
class SessionLoaded:
    days_since_last: Optional[int]
    has_history: bool
    all_reviewed: bool = False


@dataclass(frozen=True)
class SessionResumed:
    topic: str
    lesson_started: bool = False


@dataclass(frozen=True)
class PhaseSelected:
    phase: str


@dataclass(frozen=True)
class TopicChosen:
    topic: str


@dataclass(frozen=True)
class LessonStreamed:
    pass


@dataclass(frozen=True)
class QuizStarted:
    pass


@dataclass(frozen=True)
class QuizFinished:
    pass


@dataclass(frozen=True)
class ReviewFinished:
    pass


PhaseEvent = Union[SessionLoaded, SessionResumed, PhaseSelected, TopicChosen, LessonStreamed,
                   QuizStarted, QuizFinished, ReviewFinished]


def days_since(last_timestamp_ms: Optional[int], now: Optional[datetime] = None) -> Optional[int]:
    """Whole calendar days between the last session and now, in local time."""
    if last_timestamp_ms is None:
        return None
    today: date = (now or datetime.now()).date()
    last = datetime.fromtimestamp(last_timestamp_ms / 1000).date()
    return (today - last).days


def reduce_phase(state: PhaseState, event: PhaseEvent) -> PhaseState:
    if isinstance(event, SessionLoaded):
        if state.user_override or state.topic or state.lesson_started:
            return state
        if not event.has_history or event.all_reviewed or event.days_since_last is None:
            return state
        if state.phase == "repeat" and event.days_since_last >= 1:
            return replace(state, phase="learn")
        return state

    if isinstance(event, SessionResumed):
        # An unfinished session that got past review picks up where it stopped.
        if not event.topic:
            return state
        return replace(state, phase="quiz" if event.lesson_started else "learn",
                       topic=event.topic, lesson_started=event.lesson_started)

    if isinstance(event, PhaseSelected):
        if event.phase not in PHASES:
            raise ValueError(f"Unknown phase: {event.phase!r}")
        return replace(state, phase=event.phase, user_override=True)

    if isinstance(event, TopicChosen):
        return replace(state, topic=event.topic, lesson_started=False)

    if isinstance(event, LessonStreamed):
        return replace(state, lesson_started=True)

    if isinstance(event, ReviewFinished):
        if state.phase == "repeat":
            return replace(state, phase="learn")
        return state

    if isinstance(event, QuizStarted):
        if state.phase == "learn" and state.lesson_started:
            return replace(state, phase="quiz")
        return state

    if isinstance(event, QuizFinished):
        if state.phase == "quiz":
            return replace(state, phase="complete")
        return state

    raise TypeError(f"Unknown phase event: {event!r}")
