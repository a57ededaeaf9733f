"""Caller-supplied identity and API credentials."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, Mapping, Optional
from urllib.parse import urlsplit

__all__ = ["Credentials", "authenticated_clone_url"]


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


@dataclass(slots=True, frozen=True)
class Credentials:
    """Tokens and usernames for one caller.

    ``hf_token`` authenticates against the remote job API and is required by
    that backend only. ``hf_username`` is the primary identity used to
    namespace job URLs, with ``github_username`` as the fallback.
    """

    hf_token: Optional[str] = None
    openai_api_key: Optional[str] = None
    github_token: Optional[str] = None
    hf_username: Optional[str] = None
    github_username: Optional[str] = None

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Credentials":
        source = os.environ if env is None else env
        return cls(
            hf_token=_clean(source.get("HF_TOKEN")),
            openai_api_key=_clean(source.get("OPENAI_API_KEY")),
            github_token=_clean(source.get("GITHUB_TOKEN")),
            hf_username=_clean(source.get("HF_USERNAME")),
            github_username=_clean(source.get("GITHUB_USERNAME")),
        )

    @property
    def effective_username(self) -> Optional[str]:
        return _clean(self.hf_username) or _clean(self.github_username)

    def agent_secrets(self) -> Dict[str, str]:
        """Secrets derived from the credentials, before profile and job values."""
        secrets: Dict[str, str] = {"OPENAI_API_KEY": self.openai_api_key or ""}
        if self.github_token:
            secrets["GITHUB_TOKEN"] = self.github_token
        return secrets

    def __repr__(self) -> str:
        present = [name for name in self.__slots__ if getattr(self, name)]
        return f"Credentials(present={present})"


def authenticated_clone_url(url: str, token: Optional[str]) -> str:
    """Embed ``token`` into a github.com HTTPS URL for non-interactive git.

    Other hosts and missing tokens return ``url`` unchanged.
    """
    if not token:
        return url
    parts = urlsplit(url)
    if parts.scheme not in {"http", "https"} or parts.hostname != "github.com":
        return url
    path = parts.path
    if not path.endswith(".git"):
        path = f"{path}.git"
    return f"https://{token}@github.com{path}"
