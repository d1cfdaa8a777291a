"""
Orchestrator for the generation pipeline.

Provides wrapper functions for the LangGraph-based workflow.
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence

from webuild.graph import REJECTED_TEMPLATE, get_graph
from webuild.schemas import ChatTurn
from webuild.state import GraphState, create_initial_state


class GenerationError(Exception):
    """Raised when the model could not produce output for a request."""
    pass


# =============================================================================
# GRAPH-BASED ORCHESTRATION
# =============================================================================

def run_graph(
    user_input: str,
    chat_history: Optional[List[ChatTurn]] = None,
    current_files: Optional[Mapping[str, str]] = None,
) -> GraphState:
    """
    Run the LangGraph workflow with the given inputs.

    Args:
        user_input: The user's message
        chat_history: Previous conversation history
        current_files: Files already in the project

    Returns:
        The final GraphState with results
    """
    initial_state = create_initial_state(
        user_input=user_input,
        chat_history=chat_history,
        current_files=dict(current_files or {}),
    )
    return get_graph().invoke(initial_state)


def run_generation(
    user_input: str,
    chat_history: Optional[List[ChatTurn]] = None,
    current_files: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    """
    Run a generation request.

    Returns:
        Dict with 'raw_output', 'parse_result', 'template', 'chat_history' and 'errors'
    """
    result = run_graph(user_input, chat_history=chat_history, current_files=current_files)

    return {
        "raw_output": result.get("raw_output"),
        "parse_result": result.get("parse_result"),
        "template": result.get("template"),
        "chat_history": result.get("chat_history", []),
        "errors": result.get("errors", []),
    }


def generate(
    prompt: str,
    context: Optional[Sequence[ChatTurn]] = None,
    current_files: Optional[Mapping[str, str]] = None,
) -> str:
    """
    Produce raw model text for a prompt and its conversation context.

    The text is returned even when it fails block validation; the update
    coordinator reports parse errors when it is submitted.

    Args:
        prompt: The user's message
        context: Previous conversation turns
        current_files: Files already in the project

    Returns:
        Raw model output

    Raises:
        GenerationError: If the request is not a web app or the model call failed
    """
    result = run_generation(prompt, chat_history=list(context or []), current_files=current_files)

    if result["template"] == REJECTED_TEMPLATE or result["raw_output"] is None:
        message = "; ".join(result["errors"]) or "The model returned no output"
        raise GenerationError(message)

    return result["raw_output"]
