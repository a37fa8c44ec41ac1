"""Tests for secret generation and reuse."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from gameportctl.errors import SecretGenerationError, SecretResolutionError
from gameportctl.secret_manager import generate_secret, load_or_create, read_existing

CONFIG_PATH = Path("/etc/gameport/config.json")


def _counting_source() -> object:
    calls = iter(range(1, 100))

    def source(size: int) -> bytes:
        return bytes([next(calls)]) * size

    return source


def test_generate_secret_is_hex_of_32_bytes() -> None:
    """Secrets are 64 lowercase hex characters."""
    assert generate_secret(lambda size: b"\xab" * size) == "ab" * 32


def test_generate_secret_rejects_short_reads() -> None:
    """A random source returning too few bytes is an error."""
    with pytest.raises(SecretGenerationError, match="returned 4 bytes"):
        generate_secret(lambda size: b"\x00" * 4)


def test_generate_secret_propagates_unavailable_source() -> None:
    """There is no fallback to a weaker source."""

    def broken(size: int) -> bytes:
        raise NotImplementedError("no entropy")

    with pytest.raises(SecretGenerationError, match="no entropy"):
        generate_secret(broken)


def test_fresh_install_generates_distinct_secrets(fake_env: Any) -> None:
    """Without a config every secret is generated independently."""
    bundle = load_or_create(fake_env, CONFIG_PATH, token_source=_counting_source())  # type: ignore[arg-type]

    assert bundle.fresh
    assert len({bundle.signing_secret, bundle.app_key, bundle.db_password}) == 3
    assert bundle.summary() == {
        "signing_secret": "generated",
        "app_key": "generated",
        "db_password": "generated",
    }


def test_existing_secrets_are_reused_verbatim(fake_env: Any) -> None:
    """Values already on disk are returned byte for byte."""
    fake_env.files[CONFIG_PATH] = json.dumps(
        {
            "app": {"secretKey": "app-key"},
            "auth": {"secret": "signing"},
            "database": {"connection": {"password": "p@ss"}},
        }
    )

    def never(size: int) -> bytes:
        raise AssertionError("must not generate")

    bundle = load_or_create(fake_env, CONFIG_PATH, token_source=never)

    assert (bundle.signing_secret, bundle.app_key, bundle.db_password) == (
        "signing",
        "app-key",
        "p@ss",
    )
    assert bundle.reused == frozenset({"signing_secret", "app_key", "db_password"})


def test_legacy_signing_location_is_honoured(fake_env: Any) -> None:
    """Older configs kept the signing secret under ``jwt.secret``."""
    fake_env.files[CONFIG_PATH] = json.dumps({"jwt": {"secret": "legacy"}})

    assert read_existing(fake_env, CONFIG_PATH) == {"signing_secret": "legacy"}


def test_partial_config_fills_only_missing_values(fake_env: Any) -> None:
    """Missing entries are generated while present ones are kept."""
    fake_env.files[CONFIG_PATH] = json.dumps({"auth": {"secret": "keep-me"}, "app": {"secretKey": ""}})

    bundle = load_or_create(fake_env, CONFIG_PATH, token_source=lambda size: b"\x01" * size)

    assert bundle.signing_secret == "keep-me"
    assert bundle.app_key == "01" * 32
    assert bundle.summary()["app_key"] == "generated"
    assert not bundle.fresh


@pytest.mark.parametrize("content", ["{not json", "[1, 2, 3]"])
def test_unreadable_config_is_not_overwritten(fake_env: Any, content: str) -> None:
    """A corrupt config stops the run instead of silently rotating secrets."""
    fake_env.files[CONFIG_PATH] = content

    with pytest.raises(SecretResolutionError) as excinfo:
        load_or_create(fake_env, CONFIG_PATH)

    assert excinfo.value.remediation is not None
