"""Secret resolution.

Every secret the service uses (signing key, helpdesk secrets, Cloudflare Access
token) is a :class:`Credential`. Callers only ever ``await cred.resolve()``; they
never care whether the value was inline in the environment, read from a mounted
secret file, or fetched from a secret store.
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Awaitable, Callable, Protocol, runtime_checkable

__all__ = [
    "Credential",
    "LiteralCredential",
    "FileCredential",
    "SecretStoreCredential",
    "credential_from_env",
    "resolve_optional",
]


@runtime_checkable
class Credential(Protocol):
    async def resolve(self) -> str:  # pragma: no cover - protocol
        ...


class LiteralCredential:
    """Inline value (plain env var)."""

    def __init__(self, value: str):
        self._value = value

    async def resolve(self) -> str:
        return self._value

    def __repr__(self) -> str:
        return "LiteralCredential(***)"


class FileCredential:
    """Value read from a mounted secret file (``<NAME>_FILE`` convention)."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    async def resolve(self) -> str:
        text = await asyncio.to_thread(self.path.read_text, encoding="utf-8")
        return text.strip()

    def __repr__(self) -> str:
        return f"FileCredential({self.path})"


class SecretStoreCredential:
    """Indirect lookup through any async getter (secret-manager handle)."""

    def __init__(self, getter: Callable[[], Awaitable[str]], name: str = "secret"):
        self._getter = getter
        self.name = name

    async def resolve(self) -> str:
        return await self._getter()

    def __repr__(self) -> str:
        return f"SecretStoreCredential({self.name})"


def credential_from_env(name: str) -> Credential | None:
    """Build a credential for ``name``: inline value wins over ``<name>_FILE``."""
    value = os.getenv(name)
    if value:
        return LiteralCredential(value)
    path = os.getenv(f"{name}_FILE")
    if path:
        return FileCredential(path)
    return None


async def resolve_optional(cred: Credential | None) -> str | None:
    """Resolve ``cred`` and collapse missing/empty values to ``None``."""
    if cred is None:
        return None
    value = await cred.resolve()
    return value or None
