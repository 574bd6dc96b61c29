"""Async client for the Gmail REST API (``users.messages``)."""

from __future__ import annotations

import base64
from typing import Any, Protocol

import httpx
import structlog

from .config import GmailConfig, RetryConfig
from .errors import EmailNotFoundError, ProviderError, SourceNotFoundError
from .models import ProviderMessage
from .retry import with_retry

logger = structlog.get_logger()


class CredentialSource(Protocol):
    """Supplies a bearer token for provider calls.  Token acquisition lives elsewhere."""

    async def access_token(self) -> str: ...


class StaticTokenCredentials:
    """Bearer token taken verbatim from configuration."""

    def __init__(self, config: GmailConfig) -> None:
        self._token = config.access_token.get_secret_value()

    async def access_token(self) -> str:
        return self._token


class _TransientProviderError(ProviderError):
    """5xx / 429 from the provider; retried."""


def _error_reasons(response: httpx.Response) -> set[str]:
    try:
        body = response.json()
    except ValueError:
        return set()
    error = body.get("error") if isinstance(body, dict) else None
    if not isinstance(error, dict):
        return set()
    reasons = {str(e.get("reason", "")) for e in error.get("errors", []) if isinstance(e, dict)}
    if error.get("status"):
        reasons.add(str(error["status"]))
    return {r.lower() for r in reasons if r}


class GmailClient:
    """Fetches raw messages and attachment bodies for one mailbox."""

    def __init__(
        self,
        config: GmailConfig,
        retry_config: RetryConfig,
        credentials: CredentialSource | None = None,
    ) -> None:
        self._config = config
        self._retry_config = retry_config
        self._credentials = credentials or StaticTokenCredentials(config)
        self._client: httpx.AsyncClient | None = None

    async def start(self) -> None:
        self._client = httpx.AsyncClient(
            base_url=self._config.base_url,
            timeout=httpx.Timeout(self._config.timeout_seconds),
        )
        logger.info("gmail_client_started", base_url=self._config.base_url)

    async def stop(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("gmail_client_stopped")

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        assert self._client is not None, "Gmail client not started"

        @with_retry(
            self._retry_config,
            retryable_exceptions=(httpx.TransportError, _TransientProviderError),
        )
        async def _send() -> httpx.Response:
            token = await self._credentials.access_token()
            response = await self._client.get(
                path,
                params=params,
                headers={"Authorization": f"Bearer {token}"},
            )
            if response.status_code >= 500 or response.status_code == 429:
                raise _TransientProviderError(
                    f"Provider returned {response.status_code} for {path}",
                    status_code=response.status_code,
                )
            return response

        try:
            response = await _send()
        except httpx.TransportError as exc:
            raise ProviderError(f"Provider unreachable: {exc}") from exc
        except _TransientProviderError as exc:
            raise ProviderError(str(exc), status_code=exc.status_code) from exc

        if response.is_success:
            return response.json()

        reasons = _error_reasons(response)
        if response.status_code == 400 and ({"failedprecondition", "failed_precondition"} & reasons):
            raise SourceNotFoundError(
                f"Mailbox {self._config.user_id} is not available",
                status_code=response.status_code,
            )
        if response.status_code == 404:
            raise EmailNotFoundError(f"Provider has no resource at {path}", status_code=404)
        raise ProviderError(
            f"Provider returned {response.status_code} for {path}",
            status_code=response.status_code,
        )

    async def get_message(self, message_id: str) -> ProviderMessage:
        """Full message resource (headers plus MIME tree) for *message_id*."""
        data = await self._get(
            f"/users/{self._config.user_id}/messages/{message_id}",
            params={"format": "full"},
        )
        message = ProviderMessage.model_validate(data)
        logger.debug("provider_message_fetched", provider_message_id=message_id)
        return message

    async def get_attachment(self, message_id: str, attachment_id: str) -> bytes:
        """Decoded bytes of one attachment body."""
        data = await self._get(
            f"/users/{self._config.user_id}/messages/{message_id}/attachments/{attachment_id}"
        )
        encoded = data.get("data") or ""
        return base64.urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4))
