"""
State definitions for the generation graph.
"""

from typing import Dict, List, Optional, TypedDict

from webuild.schemas import ChatTurn, ParseResult


class GraphState(TypedDict, total=False):
    """
    Typed state dictionary for the LangGraph workflow.

    This state is passed between nodes and updated as the graph executes.
    """
    # User input
    user_input: str

    # Conversation history
    chat_history: List[ChatTurn]

    # Files already in the project (path -> content)
    current_files: Dict[str, str]

    # Template check: "next js" or "error"
    template: Optional[str]

    # Model output
    raw_output: Optional[str]
    parse_result: Optional[ParseResult]

    # Error tracking
    errors: List[str]


def create_initial_state(
    user_input: str,
    chat_history: Optional[List[ChatTurn]] = None,
    current_files: Optional[Dict[str, str]] = None,
) -> GraphState:
    """
    Create an initial state for the graph.

    Args:
        user_input: The user's message
        chat_history: Previous conversation turns
        current_files: Files already generated for this project

    Returns:
        Initialized GraphState
    """
    return GraphState(
        user_input=user_input,
        chat_history=list(chat_history or []),
        current_files=dict(current_files or {}),
        template=None,
        raw_output=None,
        parse_result=None,
        errors=[],
    )
