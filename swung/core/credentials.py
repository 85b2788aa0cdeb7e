"""
SWUNG Assistant: LLM credential holders.

A credential provider is owned by the resolver and asked for a fresh
credential on every turn. Nothing is cached past its expiry:

- ``StaticKeyProvider`` wraps a plain OpenAI-compatible API key.
- ``CopilotCredentialProvider`` reads the token file written by the
  GitHub device-flow login, checks the Copilot token's expiry and
  exchanges the stored GitHub access token for a new one when needed.

Both return ``None`` when no usable credential exists; the resolver turns
that into a ``not_authenticated`` outcome.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

import httpx

from swung.core.errors import CredentialError

logger = logging.getLogger(__name__)

COPILOT_TOKEN_URL = "https://api.github.com/copilot_internal/v2/token"
COPILOT_CHAT_BASE_URL = "https://api.githubcopilot.com"
_DEFAULT_PROXY_ENDPOINT = "proxy.individual.githubcopilot.com"

# Refresh this many seconds before the token actually expires
_EXPIRY_MARGIN_SECONDS = 60
_TIMEOUT_SECONDS = 10

_EDITOR_HEADERS = {
    "Editor-Version": "vscode/1.85.0",
    "Editor-Plugin-Version": "copilot-chat/0.12.0",
    "User-Agent": "GithubCopilot/1.0",
}


@dataclass
class Credential:
    """Everything the chat client needs to reach the model endpoint."""

    api_key: str
    base_url: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    expires_at: float | None = None     # epoch seconds; None = never

    def is_expired(self, now: float | None = None) -> bool:
        if self.expires_at is None:
            return False
        now = time.time() if now is None else now
        return now >= self.expires_at - _EXPIRY_MARGIN_SECONDS


class CredentialProvider(Protocol):
    async def get(self) -> Credential | None: ...


# ---------------------------------------------------------------------------
# Static key
# ---------------------------------------------------------------------------


class StaticKeyProvider:
    """A fixed API key that never expires."""

    def __init__(self, api_key: str, base_url: str | None = None) -> None:
        self._api_key = api_key
        self._base_url = base_url or None

    async def get(self) -> Credential | None:
        if not self._api_key or self._api_key.startswith("your-"):
            return None
        return Credential(api_key=self._api_key, base_url=self._base_url)


# ---------------------------------------------------------------------------
# GitHub Copilot
# ---------------------------------------------------------------------------


def parse_copilot_token(token: str) -> dict[str, str]:
    """Split a Copilot token (``tid=...;exp=...;proxy-ep=...``) into its fields."""
    fields: dict[str, str] = {}
    for part in (token or "").split(";"):
        key, sep, value = part.partition("=")
        if sep and key.strip():
            fields[key.strip()] = value.strip()
    return fields


def copilot_token_expiry(token: str) -> float | None:
    """Expiry (epoch seconds) embedded in a Copilot token, or None."""
    raw = parse_copilot_token(token).get("exp")
    try:
        return float(raw) if raw else None
    except ValueError:
        return None


class CopilotCredentialProvider:
    """Expiry-checked Copilot token backed by a JSON token file.

    File layout::

        {
          "github_access_token": "gho_...",
          "copilot_token": "tid=...;exp=1760000000;...",
          "copilot_expires_at": 1760000000
        }
    """

    def __init__(
        self,
        token_path: str | Path,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._token_path = Path(token_path)
        self._http_client = http_client
        self._cached: Credential | None = None
        self._lock = asyncio.Lock()

    async def get(self) -> Credential | None:
        async with self._lock:
            if self._cached is not None and not self._cached.is_expired():
                return self._cached

            tokens = self._load()
            if not tokens or not (tokens.get("copilot_token") or tokens.get("github_access_token")):
                logger.warning("No Copilot tokens at %s; sign-in required", self._token_path)
                self._cached = None
                return None

            credential = self._from_tokens(tokens)
            if credential is None or credential.is_expired():
                try:
                    tokens = await self._refresh(tokens)
                except CredentialError as exc:
                    logger.error("Copilot token refresh failed: %s", exc)
                    self._cached = None
                    return None
                credential = self._from_tokens(tokens)

            self._cached = credential
            return credential

    def _load(self) -> dict | None:
        try:
            if self._token_path.exists():
                return json.loads(self._token_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Unreadable token file %s: %s", self._token_path, exc)
        return None

    def _save(self, tokens: dict) -> None:
        try:
            self._token_path.write_text(json.dumps(tokens, indent=2), encoding="utf-8")
        except OSError as exc:
            logger.warning("Could not persist refreshed token to %s: %s", self._token_path, exc)

    @staticmethod
    def _from_tokens(tokens: dict) -> Credential | None:
        token = tokens.get("copilot_token")
        if not token:
            return None
        expires_at = tokens.get("copilot_expires_at") or copilot_token_expiry(token)
        return Credential(
            api_key=token,
            base_url=COPILOT_CHAT_BASE_URL,
            headers={
                **_EDITOR_HEADERS,
                "Openai-Organization": "github-copilot",
                "Copilot-Integration-Id": "vscode-chat",
            },
            expires_at=float(expires_at) if expires_at else None,
        )

    async def _refresh(self, tokens: dict) -> dict:
        """Exchange the stored GitHub access token for a new Copilot token."""
        access_token = tokens.get("github_access_token")
        if not access_token:
            raise CredentialError("no GitHub access token stored; sign-in required")

        headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
            **_EDITOR_HEADERS,
        }
        try:
            if self._http_client is not None:
                resp = await self._http_client.get(COPILOT_TOKEN_URL, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=_TIMEOUT_SECONDS) as client:
                    resp = await client.get(COPILOT_TOKEN_URL, headers=headers)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise CredentialError(str(exc)) from exc

        new_token = data.get("token")
        if not new_token:
            raise CredentialError("token endpoint returned no token")

        refreshed = {
            **tokens,
            "copilot_token": new_token,
            "copilot_expires_at": data.get("expires_at") or copilot_token_expiry(new_token),
            "proxy_endpoint": parse_copilot_token(new_token).get("proxy-ep", _DEFAULT_PROXY_ENDPOINT),
            "updated_at": time.time(),
        }
        self._save(refreshed)
        logger.info("Copilot token refreshed")
        return refreshed


def build_credential_provider() -> CredentialProvider:
    """Pick the provider named by LLM_PROVIDER."""
    from swung.config import settings

    if settings.LLM_PROVIDER == "openai":
        return StaticKeyProvider(settings.LLM_API_KEY, settings.LLM_BASE_URL)
    return CopilotCredentialProvider(settings.COPILOT_TOKEN_PATH)
