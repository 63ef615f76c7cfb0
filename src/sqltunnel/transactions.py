"""Transaction state machine.

Reconciles the transaction commands a client sends with the transaction
state the engine actually reports.

States:
    IDLE                  transaction_level == 0
    IN_TRANSACTION(n)     transaction_level == n >= 1

Transitions (driven by the leading keyword of a ``transaction`` item):
    BEGIN     IDLE -> 1 (native begin); n -> n+1 (savepoint sp_{n+1})
              n -> 1 (native begin) when the engine has no open transaction
    COMMIT    1 -> IDLE (native commit); n -> n-1 (no native call)
    ROLLBACK  1 -> IDLE (native rollback); n -> n-1 (rollback to sp_{n})

COMMIT and ROLLBACK first consult ``driver.in_transaction()``. When the
engine has no open transaction the session is reset to IDLE and the
command succeeds as a no-op (the connection that held the transaction is
gone, typically after a dropped connection).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum

from .driver import Driver
from .errors import EngineError
from .sessions.base import SessionState

logger = logging.getLogger(__name__)

NO_ACTIVE_TRANSACTION = "no active transaction"


class TransactionCommand(str, Enum):
    """Transaction statements understood by the endpoint."""

    BEGIN = "begin"
    COMMIT = "commit"
    ROLLBACK = "rollback"
    SAVEPOINT = "savepoint"
    RELEASE = "release"
    ROLLBACK_TO = "rollback_to"


@dataclass(frozen=True)
class TransactionStatement:
    command: TransactionCommand
    savepoint: str | None = None


_NAMED = r"\s+(?:SAVEPOINT\s+)?([A-Za-z_][A-Za-z0-9_]*)\s*;?\s*$"

_PATTERNS: list[tuple[re.Pattern[str], TransactionCommand]] = [
    # Order matters: ROLLBACK TO must win over plain ROLLBACK
    (re.compile(r"^\s*ROLLBACK(?:\s+WORK)?\s+TO" + _NAMED, re.I), TransactionCommand.ROLLBACK_TO),
    (re.compile(r"^\s*RELEASE" + _NAMED, re.I), TransactionCommand.RELEASE),
    (
        re.compile(r"^\s*SAVEPOINT\s+([A-Za-z_][A-Za-z0-9_]*)\s*;?\s*$", re.I),
        TransactionCommand.SAVEPOINT,
    ),
    (re.compile(r"^\s*(?:BEGIN|START\s+TRANSACTION)\b", re.I), TransactionCommand.BEGIN),
    (re.compile(r"^\s*COMMIT\b", re.I), TransactionCommand.COMMIT),
    (re.compile(r"^\s*ROLLBACK\b", re.I), TransactionCommand.ROLLBACK),
]


def parse_transaction_statement(query: str) -> TransactionStatement:
    """Recognize a transaction statement by its leading keyword.

    Raises:
        EngineError: If the statement is not a supported transaction command
    """
    for pattern, command in _PATTERNS:
        match = pattern.match(query)
        if match:
            name = match.group(1) if match.groups() else None
            return TransactionStatement(command, name)
    raise EngineError(f"Unsupported transaction statement: {query.strip()[:40]}")


def savepoint_name(level: int) -> str:
    """Deterministic savepoint name for a nesting level."""
    return f"sp_{level}"


def _is_no_active_transaction(exc: Exception) -> bool:
    return NO_ACTIVE_TRANSACTION in str(exc).lower()


class TransactionStateMachine:
    """Applies transaction statements to a session and its driver."""

    def apply(
        self,
        statement: TransactionStatement,
        state: SessionState,
        driver: Driver,
    ) -> SessionState:
        """Run ``statement`` and return the session's new state."""
        command = statement.command

        if command is TransactionCommand.BEGIN:
            return self._begin(state, driver)

        if command in (TransactionCommand.COMMIT, TransactionCommand.ROLLBACK):
            return self._finish(command, state, driver)

        # Explicit savepoint statements pass through without touching the level
        name = statement.savepoint or ""
        if command is TransactionCommand.SAVEPOINT:
            driver.savepoint(name)
        elif command is TransactionCommand.RELEASE:
            driver.release_savepoint(name)
        else:
            driver.rollback_to_savepoint(name)
        return state

    def _begin(self, state: SessionState, driver: Driver) -> SessionState:
        level = state.transaction_level

        if level == 0:
            if driver.in_transaction():
                # Orphaned engine transaction whose session record is gone
                logger.warning("Engine transaction open for an idle session, rolling it back")
                driver.rollback()
            driver.begin()
            logger.debug("BEGIN: level 0 -> 1")
            return state.at_level(1)

        if not driver.in_transaction():
            # Connection holding the outer transaction is gone; start over
            logger.warning(f"BEGIN at level {level} with no engine transaction, starting a new one")
            driver.begin()
            return state.at_level(1)

        name = savepoint_name(level + 1)
        driver.savepoint(name)
        logger.debug(f"BEGIN: level {level} -> {level + 1} (savepoint {name})")
        return state.at_level(level + 1)

    def _finish(
        self,
        command: TransactionCommand,
        state: SessionState,
        driver: Driver,
    ) -> SessionState:
        level = state.transaction_level

        if not driver.in_transaction():
            if state.in_transaction:
                logger.warning(
                    f"{command.value.upper()} at level {level} with no engine transaction, "
                    "resetting session"
                )
            return state.at_level(0)

        try:
            if level <= 1:
                if command is TransactionCommand.COMMIT:
                    driver.commit()
                else:
                    driver.rollback()
                logger.debug(f"{command.value.upper()}: level {level} -> 0")
                return state.at_level(0)

            if command is TransactionCommand.ROLLBACK:
                driver.rollback_to_savepoint(savepoint_name(level))
            logger.debug(f"{command.value.upper()}: level {level} -> {level - 1}")
            return state.at_level(level - 1)
        except Exception as e:
            if _is_no_active_transaction(e):
                logger.warning(f"Engine reported no active transaction on {command.value}: {e}")
                return state.at_level(0)
            raise
