"""Tests for the tutoring request handlers with a stubbed model client."""
import json

import pytest

from surge_tutor import api
from surge_tutor.errors import LLMError, ValidationError

MC_JSON = json.dumps({"mc": [
    {"question": f"Question {i}?", "options": ["a", "b", "c", "d"], "correctOption": "B", "explanation": "e"}
    for i in range(5)
], "short": []})


def test_quick_explain(settings, fake_llm):
    client = fake_llm(["A limit is where a function heads."])
    result = api.quick_explain(settings, "Calculus", "Limits", "limit", "the limit of f",
                               [f"T{i}" for i in range(150)], "German", client=client)
    assert result == {"ok": True, "content": "A limit is where a function heads."}
    call = client.calls[0]
    assert call["temperature"] == 0.4
    assert call["max_tokens"] == 220
    user = client.user_prompt()
    assert "Explain: limit" in user
    assert "T99" in user and "T100" not in user
    assert "Write in German." in client.system_prompt()


def test_quick_explain_requires_word(settings, fake_llm):
    with pytest.raises(ValidationError, match="Missing word"):
        api.quick_explain(settings, "Calculus", "Limits", "  ", client=fake_llm([]))


def test_node_lesson(settings, fake_llm):
    client = fake_llm(['{"title": "Intro", "body": "# Limits", "quiz": [{"question": "Q?"}]}'])
    result = api.node_lesson(settings, "Calculus", "Limits", [{"type": "Concept", "title": "Intro"}],
                             client=client)
    assert result["data"]["title"] == "Intro"
    assert client.calls[0]["model"] == settings.lesson_model
    assert client.calls[0]["response_format"] == {"type": "json_object"}


def test_node_lesson_requires_plan(settings, fake_llm):
    with pytest.raises(ValidationError, match="lessonsMeta"):
        api.node_lesson(settings, "Calculus", "Limits", [], client=fake_llm([]))


def test_node_lesson_stream_quick_learn(settings, fake_llm):
    client = fake_llm([["# Limits", " intro"]])
    events = list(api.node_lesson_stream(settings, "Quick Learn", "Limits", client=client))
    assert "".join(e.content for e in events if e.type == "text") == "# Limits intro"
    assert "standalone Quick Learn lesson" in client.user_prompt()
    assert client.calls[0]["max_tokens"] == 12000


def test_node_lesson_stream_validates_before_streaming(settings, fake_llm):
    client = fake_llm([])
    with pytest.raises(ValidationError):
        api.node_lesson_stream(settings, "Calculus", "Limits", client=client)
    assert client.calls == []


def test_surge_quiz_mc(settings, fake_llm):
    client = fake_llm([MC_JSON])
    context = "intro text\nCOURSE CONTEXT - CRITICAL\nreal course text"
    result = api.surge_quiz(settings, "mc", "Calculus", "Limits", context, lesson_content="Lesson body",
                            client=client)
    assert result == {"ok": True, "raw": MC_JSON, "stage": "mc"}
    user = client.user_prompt()
    assert user.startswith("COURSE CONTEXT - CRITICAL")
    assert "intro text" not in user
    assert "CURRENT LESSON CONTENT" in user
    assert client.calls[0]["temperature"] == 0.5


def test_surge_quiz_harder_includes_previous_mc(settings, fake_llm):
    client = fake_llm(['{"mc": [], "short": [{"question": "Why?", "modelAnswer": "Because."}]}'])
    api.surge_quiz(settings, "harder", "Calculus", "Limits", "context", mc_questions="1. Q1? (Correct: A)",
                   client=client)
    assert "PREVIOUS MC QUESTIONS" in client.user_prompt()
    assert client.calls[0]["max_tokens"] == 1200


def test_surge_quiz_requires_fields(settings, fake_llm):
    with pytest.raises(ValidationError, match="courseName"):
        api.surge_quiz(settings, "mc", "Calculus", "Limits", "", client=fake_llm([]))


def test_surge_quiz_rejects_lesson_text(settings, fake_llm):
    client = fake_llm(["# Limits\n\nA limit is..."])
    with pytest.raises(LLMError, match="lesson content"):
        api.surge_quiz(settings, "mc", "Calculus", "Limits", "context", client=client)


def test_surge_quiz_empty_output(settings, fake_llm):
    with pytest.raises(LLMError, match="empty content"):
        api.surge_quiz(settings, "mc", "Calculus", "Limits", "context", client=fake_llm([""]))


def test_surge_quiz_check(settings, fake_llm):
    client = fake_llm(['{"grade": 14, "assessment": "Great", "whatsGood": "All"}'])
    result = api.surge_quiz_check(settings, "Why?", "Because", "Because it is.", client=client)
    assert result["success"] is True
    assert result["grade"] == 10
    assert result["assessment"] == "Great"
    assert result["whatsBad"] == ""
    assert result["enhancedExplanation"] == "Because it is."


def test_surge_quiz_check_requires_fields(settings, fake_llm):
    with pytest.raises(ValidationError):
        api.surge_quiz_check(settings, "Why?", "", "Because", client=fake_llm([]))


def test_chat_stream(settings, fake_llm):
    client = fake_llm([["Hi"]])
    events = list(api.chat_stream(settings, [{"role": "user", "content": "hello"}, {"role": "user"}],
                                  context="c" * 20000, path="/surge", client=client))
    assert [e.type for e in events] == ["text", "done"]
    messages = client.calls[0]["messages"]
    assert messages[0]["content"].startswith("You are Nova")
    assert messages[1]["content"].startswith("Current page: /surge")
    assert len(messages[1]["content"]) < 12100
    assert len(messages) == 3


def test_lesson_flashcards(settings, fake_llm):
    client = fake_llm([json.dumps({"flashcards": [
        {"prompt": "What is a limit?", "answer": "Where f heads."},
        {"prompt": "", "answer": "orphan"},
        "junk",
    ]})])
    result = api.lesson_flashcards(settings, "Lesson body", topic="Limits", count=4, client=client)
    assert result["flashcards"] == [{"prompt": "What is a limit?", "answer": "Where f heads."}]
    assert "Create exactly 5 flashcards" in client.user_prompt()


def test_lesson_flashcards_requires_body(settings, fake_llm):
    with pytest.raises(ValidationError):
        api.lesson_flashcards(settings, "  ", client=fake_llm([]))


def test_generate_mc_quiz_filters_invalid(settings, fake_llm):
    client = fake_llm([json.dumps({"questions": [
        {"question": "Q1", "options": ["a", "b", "c", "d"], "correctAnswer": 2},
        {"question": "Q2", "options": ["a", "b"], "correctAnswer": 0},
        {"question": "Q3", "options": ["a", "b", "c", "d"], "correctAnswer": True},
    ]})])
    result = api.generate_mc_quiz(settings, "Lesson body", "Calculus", "Limits", client=client)
    assert [q["question"] for q in result["questions"]] == ["Q1"]


def test_generate_mc_quiz_all_invalid(settings, fake_llm):
    client = fake_llm(['{"questions": [{"question": "Q", "options": [], "correctAnswer": 0}]}'])
    with pytest.raises(LLMError, match="invalid"):
        api.generate_mc_quiz(settings, "Lesson body", client=client)


def test_generate_mc_quiz_no_questions(settings, fake_llm):
    with pytest.raises(LLMError, match="Failed to generate"):
        api.generate_mc_quiz(settings, "Lesson body", client=fake_llm(['{"questions": []}']))


def test_practice_logger_mc_answer(settings, fake_llm):
    client = fake_llm(['{"topic": "Limits"}'])
    result = api.practice_logger(settings, "Which is right?", "B", "calc",
                                 mc={"selected": "b", "correct": "C"}, client=client)
    entry = result["logEntry"]
    assert entry["grade"] == 3
    assert entry["result"] == "incorrect"
    assert entry["topic"] == "Limits"
    assert entry["answer"] == "MC selected: B"
    assert len(client.calls) == 1


def test_practice_logger_skips_non_answers(settings, fake_llm):
    client = fake_llm(['{"isAnswerAttempt": false, "reason": "asked for help"}'])
    result = api.practice_logger(settings, "What is a limit?", "can you help?", "calc", client=client)
    assert result == {"success": False, "skipped": True, "reason": "asked for help"}


def test_practice_logger_grades_free_text(settings, fake_llm):
    client = fake_llm([
        '{"isAnswerAttempt": true}',
        '{"topic": "Limits", "assessment": "Mention epsilon.", "grade": "7"}',
    ])
    result = api.practice_logger(settings, "What is a limit?", "The value f approaches", "calc",
                                 existing_logs=[{"topic": "Limits"}], client=client)
    entry = result["logEntry"]
    assert entry["topic"] == "Limits"
    assert entry["grade"] == 7
    assert entry["question"] == "What is a limit?"
    assert "EXISTING PRACTICE LOGS" in client.user_prompt()
