"""HTTP client for OpenAI-compatible chat completion servers.

Provides a simple interface to call /chat/completions with JSON output
enforcement, tolerant JSON extraction, and a validate-then-re-ask loop for
responses that parse but do not match the expected shape.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, TypeVar

import requests

from ..errors import AnalysisError
from .prompts import reask_message

log = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class LLMClientConfig:
    """Configuration for LLM client."""
    base_url: str = "https://api.openai.com/v1"
    model_name: str = "gpt-5-mini"
    api_key: Optional[str] = None
    timeout_s: float = 120.0
    # None: let the server use its default (some reasoning models reject overrides)
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    # Extra attempts after a response that fails validation
    max_retries: int = 1

    @classmethod
    def from_profile(cls, text_cfg: Dict[str, Any], *, api_key: Optional[str] = None) -> "LLMClientConfig":
        temperature = text_cfg.get("temperature")
        max_tokens = text_cfg.get("max_tokens")
        return cls(
            base_url=str(text_cfg.get("base_url") or "https://api.openai.com/v1").rstrip("/"),
            model_name=str(text_cfg.get("model") or "gpt-5-mini"),
            api_key=api_key,
            timeout_s=float(text_cfg.get("timeout_s", 120)),
            temperature=float(temperature) if temperature is not None else None,
            max_tokens=int(max_tokens) if max_tokens is not None else None,
            max_retries=int(text_cfg.get("max_retries", 1)),
        )


class LLMClientError(AnalysisError):
    """Base exception for LLM client errors."""
    pass


class LLMServerUnavailableError(LLMClientError):
    """Raised when the LLM server is not reachable or answers with an error status."""
    pass


class LLMResponseError(LLMClientError):
    """Raised when the LLM response is invalid."""
    pass


def _extract_json_from_response(text: str) -> Any:
    """Extract JSON from LLM response text.

    Handles common cases like markdown code blocks, extra text, etc.
    """
    text = text.strip()

    # Try direct parse first
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    # Try to find JSON in markdown code block
    code_block_match = re.search(r"```(?:json)?\s*\n?(.*?)\n?```", text, re.DOTALL)
    if code_block_match:
        try:
            return json.loads(code_block_match.group(1).strip())
        except json.JSONDecodeError:
            pass

    # Outermost object anywhere in the text
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        try:
            return json.loads(text[start:end + 1])
        except json.JSONDecodeError:
            pass

    raise LLMResponseError(f"Could not extract JSON from response: {text[:200]}...")


def _messages(prompt: str, system_prompt: Optional[str]) -> List[Dict[str, str]]:
    head = [{"role": "system", "content": system_prompt}] if system_prompt else []
    return head + [{"role": "user", "content": prompt}]


class LLMClient:
    """HTTP client for an OpenAI-compatible chat completions endpoint."""

    def __init__(self, cfg: LLMClientConfig, *, session: Optional[requests.Session] = None):
        self.cfg = cfg
        self._session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.cfg.api_key:
            headers["Authorization"] = f"Bearer {self.cfg.api_key}"
        return headers

    def _chat(self, messages: List[Dict[str, str]], *, json_mode: bool) -> str:
        body: Dict[str, Any] = {"model": self.cfg.model_name, "messages": messages}
        if self.cfg.temperature is not None:
            body["temperature"] = self.cfg.temperature
        if self.cfg.max_tokens is not None:
            body["max_tokens"] = self.cfg.max_tokens
        if json_mode:
            body["response_format"] = {"type": "json_object"}

        url = f"{self.cfg.base_url}/chat/completions"
        try:
            resp = self._session.post(url, headers=self._headers(), json=body, timeout=self.cfg.timeout_s)
        except requests.RequestException as e:
            raise LLMServerUnavailableError(f"LLM server unavailable: {e}") from e
        if resp.status_code != 200:
            raise LLMServerUnavailableError(f"AI HTTP {resp.status_code}: {resp.text[:500]}")

        try:
            content = resp.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise LLMResponseError(f"Invalid response structure: {e}") from e
        if not content:
            raise LLMResponseError("AI returned empty content")
        return content

    def complete(
        self,
        prompt: str,
        *,
        system_prompt: Optional[str] = None,
        json_mode: bool = True,
    ) -> Any:
        """Send one completion request.

        Returns:
            Parsed JSON (json_mode=True) or raw string (json_mode=False)

        Raises:
            LLMServerUnavailableError: If server is not reachable
            LLMResponseError: If response is invalid
        """
        content = self._chat(_messages(prompt, system_prompt), json_mode=json_mode)
        return _extract_json_from_response(content) if json_mode else content

    def complete_validated(
        self,
        prompt: str,
        parse: Callable[[Any], T],
        *,
        system_prompt: Optional[str] = None,
    ) -> T:
        """Complete, parse with `parse`, and re-ask on an invalid shape.

        `parse` raises AnalysisError for shapes it rejects. Transport errors
        are not retried here.
        """
        messages = _messages(prompt, system_prompt)
        last_error: Optional[AnalysisError] = None
        for attempt in range(self.cfg.max_retries + 1):
            content = self._chat(messages, json_mode=True)
            try:
                return parse(_extract_json_from_response(content))
            except AnalysisError as e:
                last_error = e
                log.info("Invalid AI response (attempt %d): %s", attempt + 1, e)
                messages.append({"role": "assistant", "content": content})
                messages.append({"role": "user", "content": reask_message(str(e))})

        raise LLMResponseError(f"AI response invalid after {self.cfg.max_retries + 1} attempts: {last_error}")
