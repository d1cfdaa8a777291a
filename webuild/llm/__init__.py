"""Model client used by the generation graph."""

from webuild.llm.azure_openai_client import AzureOpenAIClient, get_azure_client

__all__ = ["AzureOpenAIClient", "get_azure_client"]
