"""Direct Anthropic Messages API backend."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from urllib import request
from urllib.error import HTTPError, URLError

from aicmd.agent.models import CommandSuggestion
from aicmd.llm.client import (
    MAX_TOKENS,
    TEMPERATURE,
    SuggestionRequestError,
    build_system_prompt,
    build_user_messages,
    extract_text,
    parse_suggestion,
)

ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
LOGGER = logging.getLogger(__name__)


class AnthropicClient:
    """Small HTTP client for command-suggestion calls."""

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        api_url: str = ANTHROPIC_API_URL,
        timeout: float = 120.0,
        max_files: int = 1000,
    ) -> None:
        if not api_key:
            raise SuggestionRequestError(
                "Anthropic API key not found in config or environment variable"
                " ANTHROPIC_API_KEY"
            )
        self.api_key = api_key
        self.model = model
        self.api_url = api_url
        self.timeout = timeout
        self.max_files = max_files

    def suggest(
        self,
        user_query: str,
        working_directory: str,
        files: Sequence[str],
        history: str,
    ) -> CommandSuggestion:
        payload = self._build_payload(user_query, working_directory, files, history)
        return parse_suggestion(self._send(payload))

    def _build_payload(
        self,
        user_query: str,
        working_directory: str,
        files: Sequence[str],
        history: str,
    ) -> dict[str, object]:
        return {
            "model": self.model,
            "max_tokens": MAX_TOKENS,
            "temperature": TEMPERATURE,
            "system": build_system_prompt(
                working_directory, files, history, max_files=self.max_files
            ),
            "messages": build_user_messages(user_query),
        }

    def _send(self, payload: dict[str, object]) -> str:
        body = json.dumps(payload).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }
        LOGGER.debug(
            "llm_request_prepared",
            extra={"api_url": self.api_url, "model": self.model, "payload_bytes": len(body)},
        )

        req = request.Request(self.api_url, data=body, headers=headers, method="POST")
        try:
            with request.urlopen(req, timeout=self.timeout) as resp:  # noqa: S310
                raw_response = json.loads(resp.read().decode("utf-8"))
        except HTTPError as exc:
            body_excerpt = self._read_error_body_excerpt(exc)
            LOGGER.error(
                "llm_request_http_error",
                extra={
                    "api_url": self.api_url,
                    "model": self.model,
                    "http_status": exc.code,
                    "reason": exc.reason,
                    "response_excerpt": body_excerpt,
                },
            )
            details = f"API request failed with status {exc.code}: {exc.reason}"
            if body_excerpt:
                details = f"{details}. Response body: {body_excerpt}"
            raise SuggestionRequestError(details) from exc
        except URLError as exc:
            LOGGER.error(
                "llm_request_transport_error",
                extra={"api_url": self.api_url, "model": self.model, "reason": str(exc.reason)},
            )
            raise SuggestionRequestError(f"Model request transport error: {exc.reason}") from exc
        except TimeoutError as exc:
            LOGGER.error(
                "llm_request_timeout",
                extra={"api_url": self.api_url, "model": self.model, "timeout_seconds": self.timeout},
            )
            raise SuggestionRequestError(
                f"Model request timed out after {self.timeout:.1f}s"
            ) from exc
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            LOGGER.error(
                "llm_response_parse_error",
                extra={"api_url": self.api_url, "model": self.model, "error": str(exc)},
            )
            raise SuggestionRequestError(f"Model response parsing error: {exc}") from exc

        return extract_text(raw_response)

    @staticmethod
    def _read_error_body_excerpt(exc: HTTPError, *, max_chars: int = 500) -> str | None:
        if exc.fp is None:
            return None
        try:
            raw = exc.read()
        except OSError:
            return None

        if not raw:
            return None

        excerpt = raw.decode("utf-8", errors="replace").replace("\n", " ").strip()
        if len(excerpt) > max_chars:
            return f"{excerpt[:max_chars]}..."
        return excerpt
