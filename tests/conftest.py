from types import SimpleNamespace

import pytest

from surge_tutor.config import Settings
from surge_tutor.db import init_db


class FakeClient:
    """Stands in for openai.OpenAI. Replies are handed out in call order.

    A string reply becomes a chat completion; a list reply is streamed
    chunk by chunk; an exception reply is raised.
    """

    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    def _create(self, **kwargs):
        self.calls.append(kwargs)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if kwargs.get("stream"):
            return iter([
                SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=chunk))])
                for chunk in reply
            ])
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=reply))])

    def user_prompt(self, call: int = -1) -> str:
        return self.calls[call]["messages"][-1]["content"]

    def system_prompt(self, call: int = -1) -> str:
        return self.calls[call]["messages"][0]["content"]


@pytest.fixture
def tmp_db(tmp_path):
    """Provide a temporary SQLite database path for tests."""
    db_path = str(tmp_path / "test_tutor.db")
    return db_path


@pytest.fixture
def db(tmp_db):
    init_db(tmp_db)
    return tmp_db


@pytest.fixture
def settings(tmp_db):
    return Settings(openai_api_key="test-key", db_path=tmp_db)


@pytest.fixture
def fake_llm():
    return FakeClient
