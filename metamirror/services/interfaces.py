"""Contracts for the collaborators the engine is written against.

Concrete drivers (JDBC/Thrift connections, shell plumbing) live outside this
package; tests use in-process fakes.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, List, Optional, Protocol, Sequence, Tuple

from metamirror.core.workflow import Side

PART_LOCATIONS = "part_locations"


class Connection(Protocol):
    def execute(self, sql: str) -> None: ...

    def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Tuple]: ...


class ConnectionProvider(Protocol):
    def borrow(self, side: Side, direct: bool = False) -> Optional[Connection]:
        """Return a connection, or None when running dry or disconnected."""
        ...

    def release(self, connection: Connection) -> None: ...


class QueryDefinitions(Protocol):
    def get(self, side: Side, name: str) -> Optional[str]: ...


@dataclass
class CommandResult:
    records: List[str] = field(default_factory=list)
    error: bool = False


class ShellSession(Protocol):
    def run(self, command: str) -> CommandResult: ...


class ShellSessionPool(Protocol):
    def borrow(self) -> ShellSession: ...

    def return_session(self, session: ShellSession) -> None: ...
