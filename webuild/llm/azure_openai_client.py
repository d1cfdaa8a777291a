"""
Azure OpenAI client for text generation.
"""

from typing import List, Optional, Sequence, Union

from openai import AzureOpenAI

from webuild.config import Config, get_config
from webuild.logging import get_logger
from webuild.schemas import ChatTurn

logger = get_logger("webuild.llm")


class AzureOpenAIClient:
    """Client for Azure OpenAI chat completions."""

    def __init__(self, config: Optional[Config] = None):
        config = config or get_config()
        config.validate_llm()

        self.client = AzureOpenAI(
            api_key=config.azure_openai_api_key,
            api_version=config.azure_openai_api_version,
            azure_endpoint=config.azure_openai_endpoint,
        )
        self.deployment = config.azure_openai_deployment_name

    def invoke_text(
        self,
        system_prompt: str,
        user_prompt: str,
        chat_history: Optional[Sequence[Union[ChatTurn, dict]]] = None,
        temperature: float = 0.7,
        max_tokens: int = 4096,
    ) -> str:
        """
        Invoke the model for a text response.

        Args:
            system_prompt: Instructions for the assistant
            user_prompt: User's current message
            chat_history: Optional previous turns (ChatTurn or {"role", "content"} dicts)
            temperature: Sampling temperature
            max_tokens: Completion token ceiling

        Returns:
            Text response from the model ("" when the model returns nothing)
        """
        messages: List[dict] = [{"role": "system", "content": system_prompt}]

        # Add chat history if provided
        for turn in chat_history or []:
            if isinstance(turn, ChatTurn):
                messages.append({"role": turn.role, "content": turn.content})
            else:
                messages.append({
                    "role": turn.get("role", "user"),
                    "content": turn.get("content", ""),
                })

        # Add current user message
        messages.append({"role": "user", "content": user_prompt})

        logger.debug("llm.request", deployment=self.deployment, messages=len(messages))
        response = self.client.chat.completions.create(
            model=self.deployment,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
        )

        content = response.choices[0].message.content
        logger.debug("llm.response", chars=len(content or ""))
        return content or ""


# Global client instance
_client: Optional[AzureOpenAIClient] = None


def get_azure_client() -> AzureOpenAIClient:
    """Get the global Azure OpenAI client instance."""
    global _client
    if _client is None:
        _client = AzureOpenAIClient()
    return _client
