"""
Tests for completion.py - prompt templating and reply parsing.
Async adapter calls are driven with asyncio.run against a fake client.
"""
import asyncio
import pytest
import sys
import os
from types import SimpleNamespace
from unittest.mock import AsyncMock

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import anthropic
import completion
from errors import UpstreamError, UpstreamFormatError
from models import ProjectSnapshot, TaskSnapshot


class TestGenerateTasks:
    """Tests for generate_tasks."""

    def test_parses_json_array(self, fake_completion):
        fake_completion.reply = """[
            {"title": "Research", "description": "Look around", "priority": "low", "status": "todo"},
            {"title": "Build", "description": "Make it", "priority": "high", "status": "todo"}
        ]"""

        tasks = asyncio.run(completion.generate_tasks(fake_completion, "Build a shed"))

        assert [t.title for t in tasks] == ["Research", "Build"]
        assert [t.priority for t in tasks] == ["low", "high"]
        call = fake_completion.calls[0]
        assert call["max_tokens"] == 1000
        assert call["temperature"] == 0.7
        assert "Project context: General project" in fake_completion.last_system
        assert fake_completion.last_user == "Build a shed"

    def test_strips_markdown_fence(self, fake_completion):
        fake_completion.reply = '```json\n[{"title": "Fenced", "priority": "medium"}]\n```'

        tasks = asyncio.run(completion.generate_tasks(fake_completion, "x"))

        assert len(tasks) == 1
        assert tasks[0].title == "Fenced"

    def test_normalizes_items(self, fake_completion):
        fake_completion.reply = """[
            {"title": "Odd priority", "priority": "URGENT", "status": "done"},
            "not an object",
            {"description": "no title"},
            {"title": "Caps", "priority": "HIGH"}
        ]"""

        tasks = asyncio.run(completion.generate_tasks(fake_completion, "x"))

        assert [t.title for t in tasks] == ["Odd priority", "Caps"]
        assert tasks[0].priority == "medium"
        assert tasks[0].status == "todo"
        assert tasks[0].description == ""
        assert tasks[1].priority == "high"

    def test_invalid_json_raises_format_error(self, fake_completion):
        fake_completion.reply = "sure, here are some tasks:"

        with pytest.raises(UpstreamFormatError) as exc_info:
            asyncio.run(completion.generate_tasks(fake_completion, "x"))

        assert exc_info.value.raw == "sure, here are some tasks:"
        assert exc_info.value.status_code == 500

    def test_non_array_raises_format_error(self, fake_completion):
        fake_completion.reply = '{"tasks": []}'

        with pytest.raises(UpstreamFormatError, match="Invalid response format"):
            asyncio.run(completion.generate_tasks(fake_completion, "x"))

    def test_upstream_error_propagates(self, fake_completion):
        fake_completion.error = UpstreamError("API error: boom")

        with pytest.raises(UpstreamError):
            asyncio.run(completion.generate_tasks(fake_completion, "x"))


class TestTextReplies:
    """Tests for chat, summarize_project and project_suggestions."""

    def test_chat_returns_reply_verbatim(self, fake_completion):
        fake_completion.reply = "  ```not parsed```  "

        reply = asyncio.run(completion.chat(fake_completion, "Help"))

        assert reply == "  ```not parsed```  "
        assert "No specific project context" in fake_completion.last_system
        assert fake_completion.calls[0]["max_tokens"] == 500

    def test_chat_embeds_context(self, fake_completion):
        asyncio.run(completion.chat(fake_completion, "Help", {"tasks": 3}))
        assert 'Current context: {"tasks": 3}' in fake_completion.last_system

    def test_format_project(self):
        project = ProjectSnapshot(
            name="Blog",
            status="active",
            tasks=[
                TaskSnapshot(title="Write post", status="todo", priority="high"),
                TaskSnapshot(title="Pick theme", status="completed", priority="low"),
            ],
        )

        text = completion.format_project(project)

        assert "Project: Blog" in text
        assert "Description: No description" in text
        assert "Total Tasks: 2" in text
        assert "- Write post (todo, high priority)\n- Pick theme (completed, low priority)" in text

    def test_format_project_without_tasks(self):
        text = completion.format_project(ProjectSnapshot(name="Empty", status="on-hold"))
        assert "Total Tasks: 0" in text
        assert "No tasks" in text

    def test_summarize_project(self, fake_completion):
        fake_completion.reply = "Summary"

        reply = asyncio.run(completion.summarize_project(fake_completion, ProjectSnapshot(name="Blog")))

        assert reply == "Summary"
        assert fake_completion.last_user.startswith("Summarize this project:\n")
        assert fake_completion.calls[0]["max_tokens"] == 400

    def test_project_suggestions_defaults(self, fake_completion):
        asyncio.run(completion.project_suggestions(fake_completion))

        assert "Type: General project" in fake_completion.last_user
        assert "Goals: Not specified" in fake_completion.last_user
        assert "Timeframe: Not specified" in fake_completion.last_user
        assert fake_completion.calls[0]["max_tokens"] == 600


class TestAnthropicCompletionClient:
    """Tests for the Anthropic-backed client with the SDK call mocked out."""

    def _client_with_reply(self, text):
        client = completion.AnthropicCompletionClient(api_key="test-key", model="test-model")
        sdk = SimpleNamespace(messages=SimpleNamespace(create=AsyncMock(
            return_value=SimpleNamespace(content=[SimpleNamespace(type="text", text=text)])
        )))
        client._client = sdk
        return client, sdk.messages.create

    def test_splits_system_turn(self):
        client, create = self._client_with_reply("hello")

        reply = asyncio.run(client.complete(
            [{"role": "system", "content": "Be brief"}, {"role": "user", "content": "Hi"}],
            max_tokens=50,
            temperature=0.7
        ))

        assert reply == "hello"
        kwargs = create.call_args.kwargs
        assert kwargs["system"] == "Be brief"
        assert kwargs["messages"] == [{"role": "user", "content": "Hi"}]
        assert kwargs["model"] == "test-model"
        assert kwargs["max_tokens"] == 50

    def test_api_error_becomes_upstream_error(self):
        client, create = self._client_with_reply("")
        create.side_effect = anthropic.APIError("overloaded", request=None, body=None)

        with pytest.raises(UpstreamError, match="overloaded"):
            asyncio.run(client.complete([{"role": "user", "content": "Hi"}], 10, 0.7))

    def test_missing_api_key(self):
        client = completion.AnthropicCompletionClient(api_key="")

        with pytest.raises(UpstreamError, match="API key not configured"):
            asyncio.run(client.complete([{"role": "user", "content": "Hi"}], 10, 0.7))
