"""
Prompt-completion adapter for the AI assistant.

Each operation builds a fixed system prompt, attaches the caller's content as
the user turn and sends both through a CompletionClient. The client is the
only part that talks to the network, so tests substitute a fake.
"""
import json
import logging
from typing import Any, Optional, Protocol

import anthropic

import config
from errors import UpstreamError, UpstreamFormatError
from models import ProjectSnapshot, TaskSuggestion
from prompts import (
    CHAT_PROMPT,
    GENERATE_TASKS_PROMPT,
    PROJECT_DATA_TEMPLATE,
    PROJECT_SUGGESTIONS_PROMPT,
    PROJECT_SUGGESTIONS_REQUEST,
    SUMMARIZE_PROJECT_PROMPT,
)

logger = logging.getLogger("taskmaster.completion")

TEMPERATURE = 0.7
GENERATE_TASKS_MAX_TOKENS = 1000
CHAT_MAX_TOKENS = 500
SUMMARIZE_MAX_TOKENS = 400
SUGGESTIONS_MAX_TOKENS = 600

PRIORITIES = ("low", "medium", "high")


class CompletionClient(Protocol):
    async def complete(self, messages: list[dict], max_tokens: int, temperature: float) -> str:
        """Send role-tagged messages and return the generated text."""
        ...


class AnthropicCompletionClient:
    """CompletionClient backed by the Anthropic Messages API."""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        self.api_key = api_key if api_key is not None else config.ANTHROPIC_API_KEY
        self.model = model or config.ANTHROPIC_MODEL
        self._client = None

    def _get_client(self) -> anthropic.AsyncAnthropic:
        if not self.api_key or self.api_key == "your-api-key-here":
            raise UpstreamError("API key not configured")
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(api_key=self.api_key)
        return self._client

    async def complete(self, messages: list[dict], max_tokens: int, temperature: float) -> str:
        client = self._get_client()

        # Anthropic takes the system turn as a separate parameter
        system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
        api_messages = [
            {"role": m["role"], "content": m["content"]}
            for m in messages if m["role"] != "system"
        ]

        try:
            response = await client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                temperature=temperature,
                system=system,
                messages=api_messages
            )
        except anthropic.APIError as e:
            raise UpstreamError(f"API error: {e}") from e

        return "".join(block.text for block in response.content if block.type == "text")


def _messages(system: str, user: str) -> list[dict]:
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": user},
    ]


def _strip_code_fence(text: str) -> str:
    """Remove a surrounding ```json ... ``` block if present."""
    text = text.strip()
    if text.startswith("```"):
        lines = text.split("\n")
        lines = lines[1:]  # Remove first line (```json)
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        text = "\n".join(lines)
    return text


def _to_suggestion(item: Any) -> Optional[TaskSuggestion]:
    if not isinstance(item, dict) or not item.get("title"):
        return None
    priority = str(item.get("priority", "")).lower()
    return TaskSuggestion(
        title=str(item["title"]),
        description=str(item.get("description") or ""),
        priority=priority if priority in PRIORITIES else "medium",
        status="todo",
    )


async def generate_tasks(
    client: CompletionClient,
    prompt: str,
    project_name: Optional[str] = None
) -> list[TaskSuggestion]:
    """
    Ask the model for a JSON array of task suggestions.

    Raises:
        UpstreamFormatError: the reply is not JSON or not a JSON array.
    """
    system = GENERATE_TASKS_PROMPT.format(project_name=project_name or "General project")
    reply = await client.complete(
        _messages(system, prompt),
        max_tokens=GENERATE_TASKS_MAX_TOKENS,
        temperature=TEMPERATURE
    )
    logger.debug("generate_tasks reply: %d chars", len(reply))

    try:
        parsed = json.loads(_strip_code_fence(reply))
    except json.JSONDecodeError:
        raise UpstreamFormatError("Failed to parse AI response", raw=reply)

    if not isinstance(parsed, list):
        raise UpstreamFormatError("Invalid response format from AI", raw=reply)

    return [s for s in (_to_suggestion(item) for item in parsed) if s is not None]


async def chat(client: CompletionClient, message: str, context: Any = None) -> str:
    """Free-form assistant reply, returned verbatim."""
    context_text = json.dumps(context) if context else "No specific project context"
    reply = await client.complete(
        _messages(CHAT_PROMPT.format(context=context_text), message),
        max_tokens=CHAT_MAX_TOKENS,
        temperature=TEMPERATURE
    )
    logger.debug("chat reply: %d chars", len(reply))
    return reply


def format_project(project: ProjectSnapshot) -> str:
    """Render a project and a '- title (status, priority priority)' line per task."""
    tasks = project.tasks or []
    task_lines = "\n".join(
        f"- {task.title} ({task.status}, {task.priority} priority)" for task in tasks
    )
    return PROJECT_DATA_TEMPLATE.format(
        name=project.name,
        description=project.description or "No description",
        status=project.status,
        total=len(tasks),
        task_lines=task_lines or "No tasks",
    )


async def summarize_project(client: CompletionClient, project: ProjectSnapshot) -> str:
    reply = await client.complete(
        _messages(SUMMARIZE_PROJECT_PROMPT, f"Summarize this project:\n{format_project(project)}"),
        max_tokens=SUMMARIZE_MAX_TOKENS,
        temperature=TEMPERATURE
    )
    logger.debug("summarize_project reply: %d chars", len(reply))
    return reply


async def project_suggestions(
    client: CompletionClient,
    project_type: Optional[str] = None,
    goals: Optional[str] = None,
    timeframe: Optional[str] = None
) -> str:
    request = PROJECT_SUGGESTIONS_REQUEST.format(
        project_type=project_type or "General project",
        goals=goals or "Not specified",
        timeframe=timeframe or "Not specified",
    )
    reply = await client.complete(
        _messages(PROJECT_SUGGESTIONS_PROMPT, request),
        max_tokens=SUGGESTIONS_MAX_TOKENS,
        temperature=TEMPERATURE
    )
    logger.debug("project_suggestions reply: %d chars", len(reply))
    return reply
