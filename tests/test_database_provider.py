"""Tests for database provisioning through the mysql client."""
from __future__ import annotations

from typing import Any

import pytest

from gameportctl.providers.database import DatabaseError, DatabaseProvisioner, quote_literal


def test_statements_converge_schema_and_account(fake_env: Any) -> None:
    """Statements are idempotent and keep the password in sync."""
    provisioner = DatabaseProvisioner(env=fake_env)

    statements = provisioner.statements("gameport", "gameport", "s3cret")

    assert statements == [
        "CREATE DATABASE IF NOT EXISTS `gameport`;",
        "CREATE USER IF NOT EXISTS 'gameport'@'localhost' IDENTIFIED BY 's3cret';",
        "ALTER USER 'gameport'@'localhost' IDENTIFIED BY 's3cret';",
        "GRANT ALL PRIVILEGES ON `gameport`.* TO 'gameport'@'localhost';",
        "FLUSH PRIVILEGES;",
    ]


def test_quote_literal_escapes_quotes_and_backslashes() -> None:
    """Literal quoting cannot be broken out of."""
    assert quote_literal("it's") == "'it\\'s'"
    assert quote_literal("a\\b") == "'a\\\\b'"


@pytest.mark.parametrize(
    ("database", "user"),
    [("game port", "gameport"), ("gameport", "root'--"), ("db`x", "gameport")],
)
def test_invalid_identifiers_are_rejected(
    fake_env: Any,
    database: str,
    user: str,
) -> None:
    """Identifiers outside ``[A-Za-z0-9_]`` never reach SQL."""
    with pytest.raises(DatabaseError, match="Invalid"):
        DatabaseProvisioner(env=fake_env).ensure(database, user, "pw")

    assert fake_env.commands == []


def test_ensure_runs_each_statement(fake_env: Any) -> None:
    """Every statement is passed to ``mysql -e`` separately."""
    DatabaseProvisioner(env=fake_env, mysql_bin="/usr/bin/mysql").ensure("gameport", "panel", "pw")

    assert len(fake_env.commands) == 5
    assert all(command[:2] == ["/usr/bin/mysql", "-e"] for command in fake_env.commands)


def test_failure_does_not_leak_password(fake_env: Any) -> None:
    """Errors name the failing verb but never the statement text."""
    fake_env.fail("mysql", output="ERROR 1396 (HY000): Operation CREATE USER failed")

    with pytest.raises(DatabaseError) as excinfo:
        DatabaseProvisioner(env=fake_env).ensure("gameport", "gameport", "hunter2")

    assert "hunter2" not in str(excinfo.value)
    assert str(excinfo.value).startswith("CREATE DATABASE failed (exit 1)")
