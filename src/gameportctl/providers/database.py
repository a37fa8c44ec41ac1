"""Provision the panel database and account through the ``mysql`` client."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from ..environment import CommandError, SystemEnvironment

LOGGER = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z0-9_]+$")
_HOST = re.compile(r"^[A-Za-z0-9_.%:-]+$")


class DatabaseError(RuntimeError):
    """Raised when database provisioning fails."""


def _identifier(value: str, label: str) -> str:
    if not _IDENTIFIER.match(value):
        raise DatabaseError(f"Invalid {label} '{value}': only letters, digits and '_' allowed.")
    return value


def quote_literal(value: str) -> str:
    """Return *value* as a single-quoted SQL string literal."""
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


@dataclass(slots=True)
class DatabaseProvisioner:
    """Create the schema and account, keeping the password in sync."""

    env: SystemEnvironment
    mysql_bin: str = "mysql"
    account_host: str = "localhost"

    def statements(self, database: str, user: str, password: str) -> list[str]:
        """Return the SQL statements that converge the database state."""
        db_name = _identifier(database, "database name")
        user_name = _identifier(user, "database user")
        if not _HOST.match(self.account_host):
            raise DatabaseError(f"Invalid account host '{self.account_host}'.")
        account = f"'{user_name}'@'{self.account_host}'"
        secret = quote_literal(password)
        return [
            f"CREATE DATABASE IF NOT EXISTS `{db_name}`;",
            f"CREATE USER IF NOT EXISTS {account} IDENTIFIED BY {secret};",
            f"ALTER USER {account} IDENTIFIED BY {secret};",
            f"GRANT ALL PRIVILEGES ON `{db_name}`.* TO {account};",
            "FLUSH PRIVILEGES;",
        ]

    def ensure(self, database: str, user: str, password: str) -> None:
        """Apply :meth:`statements` one at a time."""
        for statement in self.statements(database, user, password):
            try:
                self.env.run([self.mysql_bin, "-e", statement])
            except CommandError as exc:
                # The statement embeds the password; report only the verb.
                verb = " ".join(statement.split()[:2])
                raise DatabaseError(
                    f"{verb} failed (exit {exc.returncode}): {exc.output.strip() or 'no output'}"
                ) from exc
        LOGGER.info("Database '%s' and user '%s' are provisioned", database, user)


__all__ = ["DatabaseError", "DatabaseProvisioner", "quote_literal"]
