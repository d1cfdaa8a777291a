"""Tests for the generation graph and its wrappers (model client faked)."""

from __future__ import annotations

import pytest

from webuild import graph as graph_module
from webuild.graph import (
    REJECTED_TEMPLATE,
    WEB_TEMPLATE,
    after_generate_route,
    after_template_route,
    generate_node,
    parse_node,
    template_node,
)
from webuild.orchestrator import GenerationError, generate, run_generation
from webuild.schemas import ChatTurn
from webuild.state import create_initial_state
from tests.fakes import FakeModelClient

REPLY = (
    'Here is your app.\n'
    '<weBuild action="create" fileName="src/App.tsx">\n'
    'export default function App() { return <h1>Todo</h1>; }\n'
    '</weBuild>\n'
    '<weBuild action="terminal" command="npm install uuid"></weBuild>'
)


@pytest.fixture
def use_client(monkeypatch: pytest.MonkeyPatch):
    """Install a FakeModelClient with the given replies."""

    def install(*replies) -> FakeModelClient:
        client = FakeModelClient(replies)
        monkeypatch.setattr(graph_module, "get_azure_client", lambda: client)
        return client

    return install


class TestTemplateNode:
    """Tests for the web-app check."""

    def test_accepts_web_app(self, use_client) -> None:
        """Should classify a next answer as the web template."""
        client = use_client("Next JS.")
        state = template_node(create_initial_state("Build a todo app"))

        assert state["template"] == WEB_TEMPLATE
        assert state["errors"] == []
        assert client.calls[0]["temperature"] == 0
        assert client.calls[0]["max_tokens"] == 10

    def test_rejects_other_requests(self, use_client) -> None:
        """Should record an error for requests that are not web apps."""
        use_client("error")
        state = template_node(create_initial_state("Write a poem"))

        assert state["template"] == REJECTED_TEMPLATE
        assert len(state["errors"]) == 1
        assert after_template_route(state) == "end"

    def test_model_failure(self, use_client) -> None:
        """Should record the failure and stop."""
        use_client(RuntimeError("rate limited"))
        state = template_node(create_initial_state("Build a todo app"))

        assert state["template"] is None
        assert state["errors"] == ["Template check failed: rate limited"]
        assert after_template_route(state) == "end"


class TestGenerateNode:
    """Tests for the generation step."""

    def test_appends_history(self, use_client) -> None:
        """Should store the reply and extend the conversation."""
        use_client(REPLY)
        history = [ChatTurn(role="user", content="hi"), ChatTurn(role="assistant", content="hello")]
        state = generate_node(create_initial_state("Build a todo app", chat_history=history))

        assert state["raw_output"] == REPLY
        assert [turn.role for turn in state["chat_history"]] == ["user", "assistant", "user", "assistant"]
        assert state["chat_history"][-1].content == REPLY
        assert after_generate_route(state) == "parse_node"

    def test_passes_history_and_files(self, use_client) -> None:
        """Should send prior turns and list existing files in the system prompt."""
        client = use_client(REPLY)
        history = [ChatTurn(role="user", content="hi")]
        generate_node(create_initial_state(
            "Add a footer",
            chat_history=history,
            current_files={"src/App.tsx": "old", "index.html": "<html/>"},
        ))

        call = client.calls[0]
        assert call["chat_history"] == [{"role": "user", "content": "hi"}]
        assert "Current project files:" in call["system_prompt"]
        assert "src/App.tsx" in call["system_prompt"]
        assert "index.html" in call["system_prompt"]

    def test_model_failure(self, use_client) -> None:
        """Should leave raw_output unset and record the error."""
        use_client(RuntimeError("timeout"))
        state = generate_node(create_initial_state("Build a todo app"))

        assert state["raw_output"] is None
        assert state["errors"] == ["Generation failed: timeout"]
        assert after_generate_route(state) == "end"


class TestParseNode:
    """Tests for validating the reply."""

    def test_valid_reply(self) -> None:
        """Should store the parse result."""
        state = create_initial_state("x")
        state["raw_output"] = REPLY
        state = parse_node(state)

        assert state["parse_result"].file_names == ["src/App.tsx"]
        assert state["parse_result"].command_strings == ["npm install uuid"]
        assert state["errors"] == []

    def test_invalid_reply(self) -> None:
        """Should record parse errors instead of raising."""
        state = create_initial_state("x")
        state["raw_output"] = '<weBuild action="create"></weBuild>'
        state = parse_node(state)

        assert state["parse_result"] is None
        assert state["errors"][0].startswith("Error parsing block 0")


class TestOrchestrator:
    """Tests for running the whole graph."""

    def test_run_generation(self, use_client) -> None:
        """Should go through every node for a web app request."""
        use_client("next js", REPLY)
        result = run_generation("Build a todo app")

        assert result["template"] == WEB_TEMPLATE
        assert result["raw_output"] == REPLY
        assert result["parse_result"].file_names == ["src/App.tsx"]
        assert result["errors"] == []
        assert len(result["chat_history"]) == 2

    def test_generate_returns_raw_text(self, use_client) -> None:
        """Should return the reply even when it fails validation."""
        use_client("next js", '<weBuild action="create"></weBuild>')
        assert generate("Build a todo app") == '<weBuild action="create"></weBuild>'

    def test_generate_rejected(self, use_client) -> None:
        """Should raise for requests that are not web apps."""
        client = use_client("error")
        with pytest.raises(GenerationError, match="web applications"):
            generate("Write a poem")
        assert len(client.calls) == 1

    def test_generate_model_failure(self, use_client) -> None:
        """Should raise when the model call fails."""
        use_client("next js", RuntimeError("quota"))
        with pytest.raises(GenerationError, match="Generation failed: quota"):
            generate("Build a todo app")
