"""Startup selection between the Anthropic and Bedrock backends."""

from __future__ import annotations

import logging
import os
from typing import Literal

from aicmd.config import (
    AnthropicSettings,
    AppConfig,
    BedrockSettings,
    ConfigError,
    anthropic_config_path,
)
from aicmd.history import HistoryLog
from aicmd.llm.anthropic_client import AnthropicClient
from aicmd.llm.bedrock_client import BedrockClient
from aicmd.llm.client import SuggestionClient, SuggestionRequestError

Backend = Literal["anthropic", "bedrock"]
LOGGER = logging.getLogger(__name__)


def select_backend(*, env_api_key: str | None, anthropic_config_exists: bool) -> Backend:
    if env_api_key:
        return "anthropic"
    if anthropic_config_exists:
        return "anthropic"
    return "bedrock"


def create_client(config: AppConfig, history: HistoryLog) -> SuggestionClient:
    """Build the suggestion client, falling back to Bedrock if Anthropic cannot start."""
    env_api_key = os.getenv("ANTHROPIC_API_KEY", "").strip() or None
    backend = select_backend(
        env_api_key=env_api_key,
        anthropic_config_exists=anthropic_config_path(config.home_dir).exists(),
    )
    LOGGER.debug("llm_backend_selected", extra={"backend": backend})
    if backend == "anthropic":
        source = "environment variable" if env_api_key else "config file"
        try:
            settings = AnthropicSettings.load(config.home_dir)
            client = AnthropicClient(
                api_key=settings.api_key,
                model=settings.model_id,
                timeout=config.request_timeout,
                max_files=config.max_files,
            )
        except (ConfigError, SuggestionRequestError) as exc:
            history.record("error", f"failed to initialize Anthropic client with {source}: {exc}")
        else:
            history.record("info", f"Using Anthropic API client (from {source})")
            return client

    try:
        bedrock = BedrockClient(
            BedrockSettings.load(config.home_dir),
            timeout=config.request_timeout,
            max_files=config.max_files,
        )
    except ConfigError as exc:
        raise SuggestionRequestError(f"failed to initialize AWS client: {exc}") from exc
    history.record("info", "Using AWS Bedrock client")
    return bedrock
