"""
LangGraph implementation of the generation pipeline.

Implements a small state graph with nodes:
- template_node: Checks that the request is a web app the sandbox can build
- generate_node: Asks the model for weBuild blocks
- parse_node: Validates the reply with the block parser
"""

from pathlib import Path
from typing import List, Literal

from langgraph.graph import StateGraph, END

from webuild.config import get_config
from webuild.llm.azure_openai_client import get_azure_client
from webuild.logging import get_logger
from webuild.parser import BlockParser, ParseError, summarize
from webuild.schemas import ChatTurn, FileAction, FileOperation, ParseResult
from webuild.state import GraphState

logger = get_logger("webuild.graph")

WEB_TEMPLATE = "next js"
REJECTED_TEMPLATE = "error"


def _load_prompt(filename: str) -> str:
    """Load a prompt template from the prompts directory."""
    prompt_path = Path(__file__).parent / "prompts" / filename
    return prompt_path.read_text(encoding="utf-8")


def _history_for_llm(chat_history: List[ChatTurn], max_turns: int = 12) -> List[dict]:
    history = []
    for turn in chat_history[-max_turns:]:
        if isinstance(turn, dict):
            history.append(turn)
        else:
            history.append({"role": turn.role, "content": turn.content})
    return history


# =============================================================================
# GRAPH NODES
# =============================================================================

def template_node(state: GraphState) -> GraphState:
    """
    Classify the request as a buildable web app ("next js") or not ("error").
    """
    client = get_azure_client()

    try:
        response = client.invoke_text(
            _load_prompt("template_system.txt"),
            state["user_input"],
            temperature=0,
            max_tokens=10,
        )
        answer = response.lower().strip().strip('."')
        state["template"] = WEB_TEMPLATE if "next" in answer else REJECTED_TEMPLATE

    except Exception as e:
        logger.warning("graph.template.failed", error=str(e))
        state["template"] = None
        state["errors"] = state.get("errors", []) + [f"Template check failed: {e}"]
        return state

    if state["template"] == REJECTED_TEMPLATE:
        state["errors"] = state.get("errors", []) + [
            "This request does not look like a web app. WeBuild can only build web applications."
        ]
    logger.info("graph.template.checked", template=state["template"])
    return state


def generate_node(state: GraphState) -> GraphState:
    """
    Ask the model for the project as weBuild blocks.
    """
    client = get_azure_client()

    # Tell the model which files already exist, without their content
    context_parts = [_load_prompt("build_system.txt")]
    current_files = state.get("current_files") or {}
    if current_files:
        existing = ParseResult(files=tuple(
            FileOperation(action=FileAction.CREATE, path=path, content=content, size=len(content.encode("utf-8")))
            for path, content in sorted(current_files.items())
        ))
        structure = summarize(existing, tag=get_config().tag_name)
        context_parts.append(f"\nCurrent project files:\n{structure}")
    full_system = "\n".join(context_parts)

    chat_history = list(state.get("chat_history", []))

    try:
        response = client.invoke_text(
            full_system,
            state["user_input"],
            chat_history=_history_for_llm(chat_history),
        )
        state["raw_output"] = response

        chat_history.append(ChatTurn(role="user", content=state["user_input"]))
        chat_history.append(ChatTurn(role="assistant", content=response))
        state["chat_history"] = chat_history

    except Exception as e:
        logger.warning("graph.generate.failed", error=str(e))
        state["errors"] = state.get("errors", []) + [f"Generation failed: {e}"]

    return state


def parse_node(state: GraphState) -> GraphState:
    """
    Validate the model output; parse errors are recorded, not raised.
    """
    raw = state.get("raw_output") or ""

    try:
        result = BlockParser.from_config().parse(raw)
        state["parse_result"] = result
        logger.info("graph.parse.completed", files=len(result.files), commands=len(result.commands))
    except ParseError as e:
        state["parse_result"] = None
        state["errors"] = state.get("errors", []) + [str(e)]

    return state


# =============================================================================
# ROUTING
# =============================================================================

def after_template_route(state: GraphState) -> Literal["generate_node", "end"]:
    """Only web app requests go on to generation."""
    if state.get("template") == WEB_TEMPLATE:
        return "generate_node"
    return "end"


def after_generate_route(state: GraphState) -> Literal["parse_node", "end"]:
    """Parse only when the model produced something."""
    if state.get("raw_output") is not None:
        return "parse_node"
    return "end"


# =============================================================================
# BUILD THE GRAPH
# =============================================================================

def build_graph() -> StateGraph:
    """Build and return the LangGraph state graph."""

    graph = StateGraph(GraphState)

    graph.add_node("template_node", template_node)
    graph.add_node("generate_node", generate_node)
    graph.add_node("parse_node", parse_node)

    graph.set_entry_point("template_node")

    graph.add_conditional_edges(
        "template_node",
        after_template_route,
        {
            "generate_node": "generate_node",
            "end": END,
        }
    )
    graph.add_conditional_edges(
        "generate_node",
        after_generate_route,
        {
            "parse_node": "parse_node",
            "end": END,
        }
    )
    graph.add_edge("parse_node", END)

    return graph


def get_compiled_graph():
    """Get the compiled graph ready for execution."""
    return build_graph().compile()


# Global compiled graph instance
_compiled_graph = None


def get_graph():
    """Get or create the global compiled graph instance."""
    global _compiled_graph
    if _compiled_graph is None:
        _compiled_graph = get_compiled_graph()
    return _compiled_graph
