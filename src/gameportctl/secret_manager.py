"""Generate installation secrets once and reuse them on every later run.

Secrets that already live in the persisted configuration are never
regenerated: rotating the signing secret would invalidate every token the
running panel has issued, and rotating the database password would lock the
panel out of its own schema.
"""
from __future__ import annotations

import json
import logging
import secrets
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .environment import SystemEnvironment
from .errors import SecretGenerationError, SecretResolutionError

LOGGER = logging.getLogger(__name__)

SECRET_BYTES = 32

# field name -> locations inside the persisted config, first match wins.
SECRET_LOCATIONS: dict[str, tuple[tuple[str, ...], ...]] = {
    "signing_secret": (("auth", "secret"), ("jwt", "secret")),
    "app_key": (("app", "secretKey"),),
    "db_password": (("database", "connection", "password"),),
}

TokenSource = Callable[[int], bytes]


@dataclass(frozen=True)
class SecretBundle:
    """Secrets shared by the persisted config, the database and the unit."""

    signing_secret: str
    app_key: str
    db_password: str
    reused: frozenset[str] = field(default_factory=frozenset)

    @property
    def fresh(self) -> bool:
        """Return ``True`` when no secret was read back from disk."""
        return not self.reused

    def summary(self) -> dict[str, str]:
        """Return which secrets were reused or generated, without values."""
        return {
            name: ("reused" if name in self.reused else "generated")
            for name in SECRET_LOCATIONS
        }


def generate_secret(token_source: TokenSource = secrets.token_bytes) -> str:
    """Return a 256-bit secret hex encoded."""
    try:
        raw = token_source(SECRET_BYTES)
    except (OSError, NotImplementedError) as exc:
        raise SecretGenerationError(
            f"Secure random source unavailable: {exc}",
            remediation="Ensure the kernel random device is available and re-run.",
        ) from exc
    if len(raw) != SECRET_BYTES:
        raise SecretGenerationError(
            f"Secure random source returned {len(raw)} bytes, expected {SECRET_BYTES}."
        )
    return raw.hex()


def _lookup(document: Mapping[str, object], path: tuple[str, ...]) -> str | None:
    current: object = document
    for key in path:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    if isinstance(current, str) and current:
        return current
    return None


def read_existing(env: SystemEnvironment, config_path: Path) -> dict[str, str] | None:
    """Return secrets stored in *config_path*, or ``None`` if it does not exist."""
    if not env.exists(config_path):
        return None
    try:
        document = json.loads(env.read_text(config_path))
    except (OSError, ValueError) as exc:
        raise SecretResolutionError(
            f"Existing configuration {config_path} could not be read: {exc}",
            remediation=(
                "Repair or restore the configuration file; it will not be "
                "overwritten with new secrets."
            ),
        ) from exc
    if not isinstance(document, Mapping):
        raise SecretResolutionError(
            f"Existing configuration {config_path} is not a JSON object.",
            remediation="Repair or restore the configuration file.",
        )
    found: dict[str, str] = {}
    for name, locations in SECRET_LOCATIONS.items():
        for location in locations:
            value = _lookup(document, location)
            if value is not None:
                found[name] = value
                break
    return found


def load_or_create(
    env: SystemEnvironment,
    config_path: Path,
    *,
    token_source: TokenSource = secrets.token_bytes,
) -> SecretBundle:
    """Reuse secrets from *config_path* verbatim, generating only what is absent."""
    existing = read_existing(env, config_path)
    values: dict[str, str] = {}
    reused: set[str] = set()
    for name in SECRET_LOCATIONS:
        if existing is not None and name in existing:
            values[name] = existing[name]
            reused.add(name)
            continue
        if existing is not None:
            LOGGER.warning(
                "Existing configuration %s lacks %s; generating a new value.",
                config_path,
                name,
            )
        values[name] = generate_secret(token_source)

    if existing is None:
        LOGGER.info("Generated fresh secrets for %s", config_path)
    else:
        LOGGER.info("Reused %d secrets from %s", len(reused), config_path)
    return SecretBundle(
        signing_secret=values["signing_secret"],
        app_key=values["app_key"],
        db_password=values["db_password"],
        reused=frozenset(reused),
    )


__all__ = [
    "SECRET_BYTES",
    "SecretBundle",
    "generate_secret",
    "load_or_create",
    "read_existing",
]
