from surge_tutor.explain import explain_word, find_word_at, lesson_words, local_context, paragraph_at


def test_find_word_at_inside_and_at_end():
    assert find_word_at("Hello world", 7) == ("world", 6, 11)
    assert find_word_at("Hello world", 11) == ("world", 6, 11)
    assert find_word_at("Hello world", 0) == ("Hello", 0, 5)


def test_find_word_at_keeps_apostrophes_and_hyphens():
    assert find_word_at("don’t stop", 1) == ("don’t", 0, 5)
    assert find_word_at("a well-known fact", 4)[0] == "well-known"


def test_find_word_at_whitespace():
    assert find_word_at("a  b", 2) is None
    assert find_word_at("", 0) is None


def test_find_word_at_unicode():
    assert find_word_at("großer Ärger", 8)[0] == "Ärger"


def test_local_context():
    text = "x" * 300 + " epsilon " + "y" * 300
    ctx = local_context(text, "epsilon")
    assert "epsilon" in ctx
    assert len(ctx) == 120 + len("epsilon") + 120
    assert local_context("z" * 500, "missing") == "z" * 240


def test_lesson_words():
    assert lesson_words("Ein well-known Ärger_x") == [(0, "Ein"), (4, "well-known"), (15, "Ärger"), (21, "x")]


def test_paragraph_at():
    text = "A\n\nB line\n\nC"
    assert paragraph_at(text, 4) == "B line"
    assert paragraph_at(text, 0) == "A"
    assert paragraph_at(text, len(text)) == "C"


def test_explain_word(settings, fake_llm):
    client = fake_llm(["Epsilon is a tiny positive number."])
    data = {"subject": "Calculus", "topics": [{"name": "Limits"}], "course_language_code": "de"}
    content = explain_word(settings, data, "calc", "Limits", "epsilon",
                           "For every epsilon there is a delta.", client=client)
    assert content == "Epsilon is a tiny positive number."
    user = client.user_prompt()
    assert "Explain: epsilon" in user
    assert "Course topics: Limits" in user
    assert "Nearby context: For every epsilon" in user
    assert "Write in DE." in client.system_prompt()
