"""Tests for the Azure OpenAI client (SDK mocked)."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from webuild.config import Config, ConfigError
from webuild.llm import azure_openai_client
from webuild.llm.azure_openai_client import AzureOpenAIClient
from webuild.schemas import ChatTurn


@pytest.fixture
def credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AZURE_OPENAI_API_KEY", "key")
    monkeypatch.setenv("AZURE_OPENAI_ENDPOINT", "https://example.openai.azure.com")
    monkeypatch.setenv("AZURE_OPENAI_DEPLOYMENT_NAME", "gpt-4o")


@pytest.fixture
def sdk(monkeypatch: pytest.MonkeyPatch) -> MagicMock:
    """Replace the AzureOpenAI constructor with a mock."""
    mock = MagicMock()
    monkeypatch.setattr(azure_openai_client, "AzureOpenAI", mock)
    return mock


def reply(sdk: MagicMock, content) -> None:
    completion = MagicMock()
    completion.choices[0].message.content = content
    sdk.return_value.chat.completions.create.return_value = completion


class TestAzureOpenAIClient:
    """Tests for invoke_text()."""

    def test_missing_credentials(self, monkeypatch: pytest.MonkeyPatch, sdk: MagicMock) -> None:
        """Should refuse to build without credentials."""
        monkeypatch.delenv("AZURE_OPENAI_API_KEY", raising=False)
        with pytest.raises(ConfigError):
            AzureOpenAIClient(Config())
        sdk.assert_not_called()

    def test_builds_messages(self, credentials: None, sdk: MagicMock) -> None:
        """Should send system, history and user messages in order."""
        reply(sdk, "<weBuild/>")
        client = AzureOpenAIClient(Config())

        text = client.invoke_text(
            "system",
            "build it",
            chat_history=[ChatTurn(role="user", content="hi"), {"role": "assistant", "content": "hello"}],
            temperature=0,
            max_tokens=10,
        )

        assert text == "<weBuild/>"
        kwargs = sdk.return_value.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["temperature"] == 0
        assert kwargs["max_tokens"] == 10
        assert kwargs["messages"] == [
            {"role": "system", "content": "system"},
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
            {"role": "user", "content": "build it"},
        ]
        assert sdk.call_args.kwargs["azure_endpoint"] == "https://example.openai.azure.com"

    def test_empty_reply(self, credentials: None, sdk: MagicMock) -> None:
        """Should return an empty string when the model returns no content."""
        reply(sdk, None)
        assert AzureOpenAIClient(Config()).invoke_text("s", "u") == ""
