from datetime import datetime

import pytest

from surge_tutor.phase import (
    LessonStreamed, PhaseSelected, PhaseState, QuizFinished, QuizStarted, ReviewFinished, SessionLoaded, SessionResumed,
    TopicChosen, days_since, reduce_phase,
)


def _ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def test_initial_phase_is_repeat():
    assert PhaseState().phase == "repeat"


def test_new_day_moves_to_learn():
    state = reduce_phase(PhaseState(), SessionLoaded(days_since_last=1, has_history=True))
    assert state.phase == "learn"


def test_same_day_stays_in_repeat():
    state = reduce_phase(PhaseState(), SessionLoaded(days_since_last=0, has_history=True))
    assert state.phase == "repeat"


def test_no_history_stays_in_repeat():
    state = reduce_phase(PhaseState(), SessionLoaded(days_since_last=None, has_history=False))
    assert state.phase == "repeat"


def test_all_reviewed_keeps_phase():
    state = reduce_phase(PhaseState(), SessionLoaded(days_since_last=3, has_history=True, all_reviewed=True))
    assert state.phase == "repeat"


def test_user_choice_is_not_overridden():
    state = reduce_phase(PhaseState(), PhaseSelected("repeat"))
    assert state.user_override
    state = reduce_phase(state, SessionLoaded(days_since_last=5, has_history=True))
    assert state.phase == "repeat"


def test_topic_in_flight_blocks_auto_switch():
    state = reduce_phase(PhaseState(), TopicChosen("Limits"))
    state = reduce_phase(state, SessionLoaded(days_since_last=5, has_history=True))
    assert state.phase == "repeat"
    assert state.topic == "Limits"


def test_quiz_needs_a_streamed_lesson():
    state = PhaseState(phase="learn")
    assert reduce_phase(state, QuizStarted()).phase == "learn"
    state = reduce_phase(reduce_phase(state, TopicChosen("Limits")), LessonStreamed())
    assert state.lesson_started
    state = reduce_phase(state, QuizStarted())
    assert state.phase == "quiz"
    assert reduce_phase(state, QuizFinished()).phase == "complete"


def test_quiz_finished_outside_quiz_is_ignored():
    assert reduce_phase(PhaseState(phase="learn"), QuizFinished()).phase == "learn"


def test_review_finished_moves_to_learn():
    assert reduce_phase(PhaseState(), ReviewFinished()).phase == "learn"
    assert reduce_phase(PhaseState(phase="quiz"), ReviewFinished()).phase == "quiz"


def test_choosing_a_new_topic_resets_lesson_flag():
    state = PhaseState(phase="learn", topic="Limits", lesson_started=True)
    state = reduce_phase(state, TopicChosen("Continuity"))
    assert state.topic == "Continuity"
    assert not state.lesson_started


def test_resume_with_streamed_lesson_lands_in_quiz():
    state = reduce_phase(PhaseState(), SessionResumed("Limits", lesson_started=True))
    assert (state.phase, state.topic, state.lesson_started) == ("quiz", "Limits", True)
    # the restored topic keeps the day check from moving it again
    assert reduce_phase(state, SessionLoaded(days_since_last=3, has_history=True)) == state


def test_resume_before_lesson_lands_in_learn():
    state = reduce_phase(PhaseState(), SessionResumed("Limits"))
    assert state.phase == "learn"
    assert not state.lesson_started


def test_resume_without_topic_keeps_repeat():
    assert reduce_phase(PhaseState(), SessionResumed("")) == PhaseState()


def test_selecting_unknown_phase_raises():
    with pytest.raises(ValueError):
        reduce_phase(PhaseState(), PhaseSelected("lunch"))


def test_unknown_event_raises():
    with pytest.raises(TypeError):
        reduce_phase(PhaseState(), object())


def test_days_since_uses_calendar_dates():
    now = datetime(2026, 1, 2, 0, 30)
    assert days_since(_ms(datetime(2026, 1, 1, 23, 59)), now=now) == 1
    assert days_since(_ms(datetime(2026, 1, 2, 0, 1)), now=now) == 0
    assert days_since(_ms(datetime(2025, 12, 25, 12, 0)), now=now) == 8
    assert days_since(None) is None
