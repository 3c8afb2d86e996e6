"""Result and State values carried by a PromiseSource.

A ``Result`` is the outcome handed to every handler: either ``Value(v)`` or
``Error(e)``. A ``State`` is what a source currently holds: ``Unresolved``,
``Resolved(v)`` or ``Rejected(e)``. All variants are immutable, so a reader
always sees one whole variant object.
"""

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

V = TypeVar("V")
E = TypeVar("E")


@dataclass(frozen=True)
class Value(Generic[V]):
    """Successful outcome."""

    value: V

    @property
    def state(self) -> "Resolved[V]":
        return Resolved(self.value)


@dataclass(frozen=True)
class Error(Generic[E]):
    """Failed outcome. The error is opaque to this package and is never inspected."""

    error: E

    @property
    def state(self) -> "Rejected[E]":
        return Rejected(self.error)


@dataclass(frozen=True)
class Unresolved:
    """No outcome yet. All instances compare equal."""

    is_unresolved = True
    is_resolved = False
    is_rejected = False


@dataclass(frozen=True)
class Resolved(Generic[V]):
    value: V

    is_unresolved = False
    is_resolved = True
    is_rejected = False

    @property
    def result(self) -> Value[V]:
        return Value(self.value)


@dataclass(frozen=True)
class Rejected(Generic[E]):
    error: E

    is_unresolved = False
    is_resolved = False
    is_rejected = True

    @property
    def result(self) -> Error[E]:
        return Error(self.error)


Result = Union[Value[V], Error[E]]
State = Union[Unresolved, Resolved[V], Rejected[E]]
