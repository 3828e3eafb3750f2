"""Integration tests for the Surge session controller with a stubbed model."""
import json
from datetime import datetime

import pytest
from openai import OpenAIError

from surge_tutor.errors import QuizGenerationError
from surge_tutor.storage import (
    get_reviewed_topics, get_surge_log, load_practice_log, load_subject_data, new_subject_data, now_ms,
    save_subject_data,
)
from surge_tutor.surge import SurgeSession, new_session_id

LESSON = "# Limits\n\n" + "A limit describes the value a function approaches as its input approaches a point. " * 5

MC_JSON = json.dumps({"mc": [
    {"question": f"Limits question {i}?", "options": ["w", "x", "y", "z"], "correctOption": "B",
     "explanation": f"Because {i}."}
    for i in range(5)
], "short": []})

HARDER_JSON = json.dumps({"mc": [], "short": [
    {"question": f"Explain limit idea {i}.", "modelAnswer": "the function approaches a value near the point",
     "explanation": "Reasoning."}
    for i in range(4)
]})

REVIEW_MC_JSON = json.dumps({"mc": [
    {"question": "Which statement about one-sided limits holds?", "options": ["a", "b", "c", "d"],
     "correctOption": "A"},
    {"question": "When does a limit fail to exist?", "options": ["a", "b", "c", "d"], "correctOption": "C"},
    {"question": "Pick the squeeze theorem conclusion.", "options": ["a", "b", "c", "d"], "correctOption": "D"},
]})

REVIEW_SHORT_JSON = json.dumps({"short": [
    {"question": "Describe how epsilon relates to delta.", "modelAnswer": "for every epsilon there is a delta"},
    {"question": "Why can a limit exist where f is undefined?", "modelAnswer": "limits ignore the point itself"},
]})


def _ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def _seed(db, log):
    data = new_subject_data("calc", subject="Calculus", course_context="First-year calculus")
    data["surgeLog"] = log
    save_subject_data(db, "calc", data).join()


def _session(db, settings, fake_llm, replies, **kwargs):
    client = fake_llm(replies)
    return SurgeSession(db, "calc", settings, client=client, **kwargs), client


def test_new_session_id_format():
    session_id = new_session_id()
    ts, suffix = session_id.split("-")
    assert int(ts) > 0
    assert len(suffix) == 12


def test_first_session_starts_in_repeat_with_welcome(db, settings, fake_llm):
    session, _ = _session(db, settings, fake_llm, [])
    assert session.phase == "repeat"
    assert session.welcome_needed()
    assert session.topics_to_review() == []
    assert session.request_review_questions() == []


def test_new_day_starts_in_learn(db, settings, fake_llm):
    _seed(db, [{"sessionId": "old", "timestamp": _ms(datetime(2026, 3, 9, 12, 0)), "newTopic": "Limits",
                "summary": "done"}])
    session, _ = _session(db, settings, fake_llm, [], now=datetime(2026, 3, 10, 8, 0))
    assert session.phase == "learn"
    assert not session.welcome_needed()


def test_same_day_stays_in_repeat(db, settings, fake_llm):
    _seed(db, [{"sessionId": "old", "timestamp": _ms(datetime(2026, 3, 10, 7, 0)), "newTopic": "Limits",
                "summary": "done"}])
    session, _ = _session(db, settings, fake_llm, [], now=datetime(2026, 3, 10, 20, 0))
    assert session.phase == "repeat"


def test_suggest_topics_stops_at_four(db, settings, fake_llm):
    session, client = _session(db, settings, fake_llm, [[
        "TOPIC_SUGGESTION: Limits\nTOPIC_SUGGESTION: Conti",
        "nuity\nTOPIC_SUGGESTION: Derivatives\nTOPIC_SUGGESTION: Chain Rule\n",
        "TOPIC_SUGGESTION: Integrals\n",
    ]])
    assert session.suggest_topics() == ["Limits", "Continuity", "Derivatives", "Chain Rule"]
    assert "INITIAL STEP - TOPIC SELECTION" in client.calls[0]["messages"][1]["content"]


def test_suggest_topics_reads_unterminated_last_line(db, settings, fake_llm):
    session, _ = _session(db, settings, fake_llm, [[
        "TOPIC_SUGGESTION: A\nTOPIC_SUGGESTION: B\n", "TOPIC_SUGGESTION: C\nTOPIC_SUGGESTION: D",
    ]])
    assert session.suggest_topics() == ["A", "B", "C", "D"]


def test_stream_lesson_requires_topic(db, settings, fake_llm):
    session, _ = _session(db, settings, fake_llm, [])
    with pytest.raises(QuizGenerationError):
        list(session.stream_lesson())


def test_quiz_flow_to_finished(db, settings, fake_llm):
    session, client = _session(db, settings, fake_llm, [list(LESSON.partition(". ")), MC_JSON, HARDER_JSON])
    session.select_phase("learn")
    session.choose_topic("Limits")
    assert "".join(session.stream_lesson()) == LESSON
    assert session.new_topic_lesson == LESSON

    data = load_subject_data(db, "calc")
    assert data["nodes"]["Limits"]["lessons"][0]["origin"] == "surge"
    assert "(In Progress)" in get_surge_log(db, "calc")[0].summary

    questions = session.start_quiz()
    assert session.phase == "quiz"
    assert len(questions) == 5
    assert "CURRENT LESSON CONTENT" in client.user_prompt(1)

    for i in range(5):
        response = session.answer_mc("b" if i % 2 == 0 else "A")
        assert response.is_correct is (i % 2 == 0)
        outcome = session.next_question()
        assert outcome == ("next" if i < 4 else "harder_started")
    assert session.mc_stage_completed_at is not None
    assert "PREVIOUS MC QUESTIONS" in client.user_prompt(2)

    for i in range(4):
        assert session.run.current.stage == "harder"
        session.answer_short("the function approaches a value", use_checker=False)
        outcome = session.next_question()
        assert outcome == ("next" if i < 3 else "finished")

    assert session.phase == "complete"
    log = get_surge_log(db, "calc")
    assert len(log) == 1
    entry = log[0]
    assert entry.session_id == session.session_id
    assert entry.is_complete
    assert entry.new_topic == "Limits"
    assert len(entry.quiz_results) == 9
    assert [r.stage for r in entry.quiz_results].count("harder") == 4
    assert [(t.from_stage, t.to_stage) for t in entry.quiz_stage_transitions] == [("mc", "harder")]
    assert "MC quiz completed before moving to harder questions." in entry.summary


def test_quiz_not_started_without_lesson(db, settings, fake_llm):
    session, client = _session(db, settings, fake_llm, [])
    session.select_phase("learn")
    session.choose_topic("Limits")
    assert session.start_quiz() == []
    assert session.phase == "learn"
    assert client.calls == []


def test_interrupted_quiz_resumes_same_session(db, settings, fake_llm):
    session, _ = _session(db, settings, fake_llm, [[LESSON], MC_JSON])
    session.select_phase("learn")
    session.choose_topic("Limits")
    list(session.stream_lesson())
    session.start_quiz()
    session.answer_mc("B")
    session.next_question()
    session.answer_mc("C")

    resumed, _ = _session(db, settings, fake_llm, [])
    assert resumed.session_id == session.session_id
    assert resumed.topic == "Limits"
    assert resumed.new_topic_lesson == LESSON
    assert [r.answer for r in resumed.quiz_results] == ["B", "C"]
    assert resumed.state.lesson_started
    assert resumed.phase == "quiz"
    # the topic being learned is not up for review yet
    assert resumed.topics_to_review() == []


def test_resumed_quiz_replaces_unfinished_mc_answers(db, settings, fake_llm):
    session, _ = _session(db, settings, fake_llm, [[LESSON], MC_JSON])
    session.select_phase("learn")
    session.choose_topic("Limits")
    list(session.stream_lesson())
    session.start_quiz()
    session.answer_mc("B")

    resumed, _ = _session(db, settings, fake_llm, [MC_JSON])
    assert len(resumed.start_quiz()) == 5
    assert resumed.quiz_results == []
    assert resumed.run.current.stage == "mc"


def test_resume_after_mc_goes_straight_to_harder(db, settings, fake_llm):
    session, _ = _session(db, settings, fake_llm, [[LESSON], MC_JSON, HARDER_JSON])
    session.select_phase("learn")
    session.choose_topic("Limits")
    list(session.stream_lesson())
    session.start_quiz()
    for _ in range(5):
        session.answer_mc("B")
        outcome = session.next_question()
    assert outcome == "harder_started"
    session.answer_short("the function approaches a value", use_checker=False)

    resumed, client = _session(db, settings, fake_llm, [HARDER_JSON])
    assert resumed.phase == "quiz"
    questions = resumed.start_quiz()
    assert [q.stage for q in questions] == ["harder"] * 4
    assert resumed.run.current.stage == "harder"
    assert [r.stage for r in resumed.quiz_results] == ["mc"] * 5
    assert len(client.calls) == 1


def test_quiz_written_as_delimited_blocks_starts(db, settings, fake_llm):
    blocks = ("◊MC: Which value does f approach? A) 0 B) L C) 1 D) none || CORRECT: B◊\n"
              "◊MC: Must f be defined at the point? A) yes B) no C) always D) never || CORRECT: B◊")
    session, _ = _session(db, settings, fake_llm, [[LESSON], blocks])
    session.select_phase("learn")
    session.choose_topic("Limits")
    list(session.stream_lesson())
    questions = session.start_quiz()
    assert [q.correct_option for q in questions] == ["B", "B"]
    assert session.run.current.question == "Which value does f approach?"


def test_oversized_mc_batch_is_capped(db, settings, fake_llm):
    seven = json.dumps({"mc": [
        {"question": f"Limits question {i}?", "options": ["w", "x", "y", "z"], "correctOption": "B"}
        for i in range(7)
    ]})
    session, _ = _session(db, settings, fake_llm, [[LESSON], seven])
    session.select_phase("learn")
    session.choose_topic("Limits")
    list(session.stream_lesson())
    assert len(session.start_quiz()) == 5
    assert len(session.run.stage_questions("mc")) == 5


def test_reanswering_replaces_result(db, settings, fake_llm):
    session, _ = _session(db, settings, fake_llm, [[LESSON], MC_JSON])
    session.select_phase("learn")
    session.choose_topic("Limits")
    list(session.stream_lesson())
    session.start_quiz()
    session.answer_mc("A")
    session.answer_mc("B")
    assert len(session.quiz_results) == 1
    assert session.quiz_results[0].grade == 10


def test_short_answer_uses_checker(db, settings, fake_llm):
    session, _ = _session(db, settings, fake_llm, [
        [LESSON], HARDER_JSON,
        '{"grade": 9, "assessment": "Solid", "whatsGood": "Core idea", "whatsBad": "",'
        ' "enhancedExplanation": "Full answer"}',
        OpenAIError("down"),
    ])
    session.select_phase("learn")
    session.choose_topic("Limits")
    list(session.stream_lesson())
    session.start_quiz()  # short answers for an MC request become the harder stage
    assert session.run.current.stage == "harder"

    checked = session.answer_short("It approaches a value")
    assert checked.checked
    assert checked.score == 9
    assert checked.is_correct is True
    assert session.quiz_results[0].explanation == "Full answer"

    session.next_question()
    fallback = session.answer_short("the function approaches a value near the point")
    assert not fallback.checked
    assert fallback.is_correct is True


def test_review_flow(db, settings, fake_llm):
    _seed(db, [{
        "sessionId": "old", "timestamp": now_ms(), "newTopic": "Limits", "newTopicLesson": LESSON,
        "summary": "done",
        "quizResults": [{"question": "What is a limit?", "answer": "a", "grade": 8, "topic": "Limits"}],
    }])
    session, client = _session(db, settings, fake_llm, [REVIEW_MC_JSON, REVIEW_SHORT_JSON])
    assert session.phase == "repeat"
    assert session.topics_to_review() == ["Limits"]

    questions = session.request_review_questions()
    assert len(questions) == 4
    assert {q.stage for q in questions} == {"review"}
    assert {q.topic for q in questions} == {"Limits"}
    assert "What is a limit?" in client.user_prompt(1)
    assert "EXACTLY 2 multiple-choice" in client.system_prompt(0)

    outcomes = []
    for q in questions:
        if q.type == "mc":
            session.answer_mc("A")
        else:
            session.answer_short("some answer", use_checker=False)
        outcomes.append(session.next_question())
    assert outcomes == ["next", "next", "next", "review_finished"]

    assert session.quiz_results == []
    [repeated] = session.repeated_topics
    assert repeated.topic == "Limits"
    assert len(repeated.questions) == 4
    saved = next(e for e in get_surge_log(db, "calc") if e.session_id == session.session_id)
    assert [rt.topic for rt in saved.repeated_topics] == ["Limits"]
    assert "Limits" in get_reviewed_topics(db, "calc")
    assert session.phase == "learn"
    assert session.topics_to_review() == []


def test_review_with_no_questions_raises(db, settings, fake_llm):
    _seed(db, [{"sessionId": "old", "timestamp": now_ms(), "newTopic": "Limits", "summary": "done"}])
    session, _ = _session(db, settings, fake_llm, [OpenAIError("down"), OpenAIError("down")])
    with pytest.raises(QuizGenerationError):
        session.request_review_questions()


def test_practice_answer_folds_into_repeated_topics(db, settings, fake_llm):
    session, _ = _session(db, settings, fake_llm, [
        '{"isAnswerAttempt": true}',
        '{"topic": "Limits", "assessment": "Mention one-sided limits.", "grade": 6}',
    ])
    entry = session.log_practice_answer("What is a limit?", "The value f approaches near a point")
    assert entry.topic == "Limits"
    assert entry.grade == 6
    assert [e.topic for e in load_practice_log(db, "calc")] == ["Limits"]
    assert session.repeated_topics[0].average_score == 6
    saved = get_surge_log(db, "calc")[0]
    assert saved.repeated_topics[0].topic == "Limits"
    assert "Limits (avg: 6.0/10)" in saved.summary


def test_practice_answer_skips_non_answers(db, settings, fake_llm):
    session, _ = _session(db, settings, fake_llm, ['{"isAnswerAttempt": false, "reason": "question"}'])
    assert session.log_practice_answer("What is a limit?", "what do you mean?") is None
    assert load_practice_log(db, "calc") == []


def test_practice_question_extracts_marked_text(db, settings, fake_llm):
    session, _ = _session(db, settings, fake_llm, [["Try this: ◊What is a lim", "it?◊ Good luck."]])
    assert session.practice_question() == "What is a limit?"


def test_summary_marks_in_progress(db, settings, fake_llm):
    session, _ = _session(db, settings, fake_llm, [])
    text = session.summary(False)
    assert text.startswith("Last Surge session reviewed: No previous topics.")
    assert "0 questions with average score N/A/10" in text
    assert text.endswith("(In Progress)")
    assert not session.summary(True).endswith("(In Progress)")
