"""Provides PromiseSource, the producer side of a Promise.

A PromiseSource starts Unresolved and is resolved or rejected at most once.
The first call to ``resolve`` or ``reject`` wins, from any thread; every later
call is ignored. Handlers registered before resolution are kept and run when
it happens, handlers registered afterwards run right away. Where they run is
decided by the source's ``DispatchMethod`` (see ``tiny_promise.dispatch``).

Example::

    source = PromiseSource()
    promise = source.promise
    promise.add_handler(print)
    source.resolve(42)  # prints Value(value=42)

Someone has to keep a reference to the source until it resolves, usually the
callback of the asynchronous operation it wraps. An unresolved source that is
garbage collected can never resolve; by default this is logged as a warning.
"""

from dataclasses import dataclass
import logging
import threading
from typing import TYPE_CHECKING, Callable, Generic, TypeVar

from .dispatch import DispatchMethod, call_handlers
from .result import Error, Rejected, Resolved, Result, State, Unresolved, Value

if TYPE_CHECKING:
    from .promise import Promise

V = TypeVar("V")
E = TypeVar("E")

ResultHandler = Callable[[Result[V, E]], None]

logger = logging.getLogger(__name__)


def _describe_state(state: State) -> str:
    if isinstance(state, Resolved):
        return repr(state.value)
    if isinstance(state, Rejected):
        return repr(state.error) + " (rejected)"
    return "(pending)"


@dataclass(frozen=True)
class _Action(Generic[V, E]):
    """Handlers to run, outside the lock, with the result they should receive."""

    result: Result[V, E]
    handlers: list[ResultHandler]


class _ResolutionState(Generic[V, E]):
    """The lock-protected one-shot state of a PromiseSource.

    Never calls handlers itself: it returns them, so callers run them after
    the lock is released.
    """

    def __init__(self, state: State[V, E]) -> None:
        self._lock = threading.Lock()
        self._state = state
        self._handlers: list[ResultHandler] = []

    @property
    def state(self) -> State[V, E]:
        with self._lock:
            return self._state

    def resolve(self, result: Result[V, E]) -> _Action[V, E]:
        with self._lock:
            if self._state.is_unresolved:
                self._state = result.state
                handlers = self._handlers
                self._handlers = []
                return _Action(result, handlers)
        # First writer wins, the late result is dropped.
        logger.debug("Ignoring %r, source is no longer pending", result)
        return _Action(result, [])

    def add_handler(self, handler: ResultHandler) -> _Action[V, E] | None:
        with self._lock:
            state = self._state
            if state.is_unresolved:
                self._handlers.append(handler)
                return None
        return _Action(state.result, [handler])


class PromiseSource(Generic[V, E]):
    """Creates a Promise that can be resolved or rejected.

    Once Resolved or Rejected a PromiseSource cannot change anymore; all
    subsequent calls to ``resolve`` and ``reject`` are ignored.
    """

    def __init__(
        self,
        dispatch: DispatchMethod | None = None,
        warn_unresolved_deinit: bool = True,
        _initial_state: State[V, E] | None = None,
    ) -> None:
        """Initialize a new Unresolved PromiseSource.

        Args:
            dispatch: Where handlers run, defaults to ``DispatchMethod.unspecified()``
            warn_unresolved_deinit: Log a warning when this source is garbage
                collected while still Unresolved

        Raises:
            TypeError: If dispatch is not a DispatchMethod
        """
        if dispatch is None:
            dispatch = DispatchMethod.unspecified()
        if not isinstance(dispatch, DispatchMethod):
            raise TypeError(f"Expected a DispatchMethod, got {type(dispatch).__name__}")
        self._dispatch = dispatch
        self._internal_state: _ResolutionState[V, E] = _ResolutionState(
            Unresolved() if _initial_state is None else _initial_state
        )
        self.warn_unresolved_deinit = warn_unresolved_deinit

    @classmethod
    def resolved(cls, value: V) -> "PromiseSource[V, E]":
        """Create a source that is already Resolved with ``value``."""
        return cls(warn_unresolved_deinit=False, _initial_state=Resolved(value))

    @classmethod
    def rejected(cls, error: E) -> "PromiseSource[V, E]":
        """Create a source that is already Rejected with ``error``."""
        return cls(warn_unresolved_deinit=False, _initial_state=Rejected(error))

    def __del__(self) -> None:
        # Attributes may be missing if __init__ raised.
        internal_state = getattr(self, "_internal_state", None)
        if internal_state is None or not getattr(self, "warn_unresolved_deinit", False):
            return
        if internal_state.state.is_unresolved:
            logger.warning(
                "PromiseSource deallocated while unresolved, maybe retain this object?"
            )

    @property
    def state(self) -> State[V, E]:
        """Snapshot of the current state."""
        return self._internal_state.state

    @property
    def dispatch_method(self) -> DispatchMethod:
        return self._dispatch

    @property
    def promise(self) -> "Promise[V, E]":
        """A Promise related to this PromiseSource."""
        from .promise import Promise

        return Promise(self)

    def resolve(self, value: V) -> None:
        """Resolve an Unresolved PromiseSource with ``value``.

        Ignored when the source is already Resolved or Rejected.
        """
        self._resolve_result(Value(value))

    def reject(self, error: E) -> None:
        """Reject an Unresolved PromiseSource with ``error``.

        Ignored when the source is already Resolved or Rejected.
        """
        self._resolve_result(Error(error))

    def _resolve_result(self, result: Result[V, E]) -> None:
        action = self._internal_state.resolve(result)
        call_handlers(action.handlers, action.result, self._dispatch)

    def add_or_call_result_handler(self, handler: ResultHandler) -> None:
        """Register ``handler`` to receive this source's Result.

        If the source is already Resolved or Rejected the handler is dispatched
        immediately, otherwise when the source resolves.

        Raises:
            TypeError: If handler is not callable
        """
        if not callable(handler):
            raise TypeError(f"Expected a callable handler, got {type(handler).__name__}")
        action = self._internal_state.add_handler(handler)
        if action is not None:
            call_handlers(action.handlers, action.result, self._dispatch)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {_describe_state(self.state)}>"
