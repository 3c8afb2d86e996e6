"""The consumer side of a PromiseSource."""

from typing import Generic, TypeVar

from .result import State
from .source import PromiseSource, ResultHandler, _describe_state

V = TypeVar("V")
E = TypeVar("E")


class Promise(Generic[V, E]):
    """A read-only view of the eventual outcome of a PromiseSource.

    Any number of Promises can share one source. A Promise keeps its source
    alive, but cannot resolve or reject it.
    """

    __slots__ = ("_source",)

    def __init__(self, source: PromiseSource[V, E]) -> None:
        if not isinstance(source, PromiseSource):
            raise TypeError(f"Expected a PromiseSource, got {type(source).__name__}")
        self._source = source

    @classmethod
    def resolved(cls, value: V) -> "Promise[V, E]":
        """Create a Promise that is already Resolved with ``value``."""
        return cls(PromiseSource.resolved(value))

    @classmethod
    def rejected(cls, error: E) -> "Promise[V, E]":
        """Create a Promise that is already Rejected with ``error``."""
        return cls(PromiseSource.rejected(error))

    @property
    def state(self) -> State[V, E]:
        """Point-in-time snapshot of the state of the underlying source."""
        return self._source.state

    def add_handler(self, handler: ResultHandler) -> None:
        """Call ``handler`` with the Result once the source resolves or rejects.

        Handlers added after that point are dispatched right away. Every
        handler runs exactly once.
        """
        self._source.add_or_call_result_handler(handler)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {_describe_state(self.state)}>"
