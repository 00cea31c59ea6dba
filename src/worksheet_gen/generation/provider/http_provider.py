"""OpenAI-compatible chat-completions provider over httpx."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import httpx

from worksheet_gen.generation.errors import ProviderError
from worksheet_gen.generation.models import TokenUsage
from worksheet_gen.generation.provider.base import ProviderReply, ProviderRequest, ProviderRole

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 120.0
_ERROR_BODY_LIMIT = 500


class HttpContentProvider:
    """Call ``POST {base_url}/chat/completions`` and return the reply text."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        models: Mapping[ProviderRole, str],
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        missing = [role.value for role in ProviderRole if not models.get(role)]
        if missing:
            raise ValueError(f"Missing model name for provider roles: {', '.join(missing)}")
        self._models = dict(models)
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers={"Authorization": f"Bearer {api_key}"},
            transport=transport,
        )

    def complete(self, request: ProviderRequest) -> ProviderReply:
        model = self._models[request.label]
        body = {
            "model": model,
            "messages": [
                {"role": "system", "content": request.system_instructions},
                {"role": "user", "content": request.user_instructions},
            ],
            "max_tokens": request.max_output_tokens,
            "temperature": request.temperature,
        }
        try:
            response = self._client.post("/chat/completions", json=body)
        except httpx.TimeoutException as exc:
            raise ProviderError(
                f"Provider call timed out (model={model}, role={request.label.value})",
                code="timeout",
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"Provider transport error: {exc}", code="transport_error") from exc

        if not response.is_success:
            raise ProviderError(
                f"Provider returned HTTP {response.status_code}: "
                f"{response.text[:_ERROR_BODY_LIMIT]}",
                code="http_status",
                status_code=response.status_code,
            )

        payload = _reply_payload(response)
        content = _reply_content(payload)
        if not content.strip():
            raise ProviderError("Provider returned an empty reply", code="empty_reply")
        usage = _reply_usage(payload)
        logger.debug(
            "Provider reply received: role=%s model=%s chars=%d tokens=%s",
            request.label.value,
            model,
            len(content),
            usage.total_tokens if usage is not None else "n/a",
        )
        return ProviderReply(text=content, usage=usage)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpContentProvider:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def _reply_payload(response: httpx.Response) -> Any:
    try:
        return response.json()
    except (ValueError, RecursionError) as exc:
        raise ProviderError(
            "Provider reply body is not JSON",
            code="malformed_output",
        ) from exc


def _reply_content(payload: Any) -> str:
    try:
        content = payload["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise ProviderError(
            "Provider reply has no choices[0].message.content",
            code="malformed_output",
        ) from exc
    if content is None:
        return ""
    if not isinstance(content, str):
        raise ProviderError("Provider reply content is not text", code="malformed_output")
    return content


def _reply_usage(payload: Any) -> TokenUsage | None:
    """Read ``usage.prompt_tokens``/``completion_tokens``; ``None`` when not reported."""

    usage = payload.get("usage") if isinstance(payload, dict) else None
    if not isinstance(usage, dict):
        return None
    prompt = usage.get("prompt_tokens")
    completion = usage.get("completion_tokens")
    if not any(_is_count(value) for value in (prompt, completion)):
        return None
    return TokenUsage(
        prompt_tokens=prompt if _is_count(prompt) else 0,
        completion_tokens=completion if _is_count(completion) else 0,
    )


def _is_count(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0
