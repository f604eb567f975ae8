"""AWS Bedrock runtime backend."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from aicmd.agent.models import CommandSuggestion
from aicmd.config import BedrockSettings
from aicmd.llm.client import (
    MAX_TOKENS,
    TEMPERATURE,
    SuggestionRequestError,
    build_system_prompt,
    build_user_messages,
    extract_text,
    parse_suggestion,
)

BEDROCK_ANTHROPIC_VERSION = "bedrock-2023-05-31"
LOGGER = logging.getLogger(__name__)


class BedrockClient:
    """Invokes an Anthropic model hosted on Bedrock."""

    def __init__(
        self,
        settings: BedrockSettings,
        *,
        timeout: float = 120.0,
        max_files: int = 1000,
        runtime: Any | None = None,
    ) -> None:
        self.settings = settings
        self.model = settings.modelid
        self.timeout = timeout
        self.max_files = max_files
        self.runtime = runtime if runtime is not None else self._create_runtime()

    def _create_runtime(self) -> Any:
        try:
            session = boto3.Session(
                profile_name=self.settings.profile,
                region_name=self.settings.region,
            )
            return session.client(
                "bedrock-runtime",
                endpoint_url=self.settings.endpoint,
                config=Config(read_timeout=self.timeout, retries={"max_attempts": 1}),
            )
        except BotoCoreError as exc:
            raise SuggestionRequestError(f"failed to load AWS config: {exc}") from exc

    def suggest(
        self,
        user_query: str,
        working_directory: str,
        files: Sequence[str],
        history: str,
    ) -> CommandSuggestion:
        body = {
            "anthropic_version": BEDROCK_ANTHROPIC_VERSION,
            "max_tokens": MAX_TOKENS,
            "temperature": TEMPERATURE,
            "system": build_system_prompt(
                working_directory, files, history, max_files=self.max_files
            ),
            "messages": build_user_messages(user_query),
        }
        LOGGER.debug("bedrock_request_prepared", extra={"model": self.model})
        try:
            response = self.runtime.invoke_model(
                modelId=self.model,
                contentType="application/json",
                accept="application/json",
                body=json.dumps(body),
            )
            raw = json.loads(response["body"].read())
        except ClientError as exc:
            LOGGER.error(
                "bedrock_client_error",
                extra={"model": self.model, "error": str(exc)},
            )
            raise SuggestionRequestError(f"failed to invoke model: {exc}") from exc
        except BotoCoreError as exc:
            LOGGER.error(
                "bedrock_transport_error",
                extra={"model": self.model, "error": str(exc)},
            )
            raise SuggestionRequestError(f"failed to invoke model: {exc}") from exc
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise SuggestionRequestError(f"failed to parse model response: {exc}") from exc

        return parse_suggestion(extract_text(raw))
