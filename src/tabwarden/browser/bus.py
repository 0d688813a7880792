"""Session event bus built on bubus.

bubus already gives us typed events, serial in-order handler execution and
awaitable dispatch. ``SessionEventBus`` layers the coordination rules of a
browser session on top of it:

- intents have exactly one owner (``own``), and other components can only
  observe them beforehand (``before``) and veto by raising;
- notification observers (``subscribe``) never see events dispatched before
  they registered;
- ``expect`` waits for the next matching event with a timeout.

Example:
    >>> bus = SessionEventBus()
    >>> bus.own(NavigateToUrlEvent, session.on_NavigateToUrlEvent)
    >>> bus.before(NavigateToUrlEvent, security.before_NavigateToUrlEvent)
    >>> event = bus.dispatch(NavigateToUrlEvent(url='https://example.com'))
    >>> await event
    >>> await event.event_result(raise_if_any=True, raise_if_none=False)
"""

import asyncio
import inspect
import logging
from collections import OrderedDict
from collections.abc import Callable
from typing import Any, TypeVar
from uuid import uuid4

from bubus import BaseEvent, EventBus

from tabwarden.browser.views import HandlerConflictError

logger = logging.getLogger(__name__)

T_Event = TypeVar('T_Event', bound=BaseEvent[Any])

Handler = Callable[[Any], Any]

# Number of dispatched events whose generation is remembered
_GENERATION_HISTORY = 1000


def _handler_label(handler: Handler) -> str:
    owner = getattr(handler, '__self__', None)
    name = getattr(handler, '__name__', repr(handler))
    return f'{type(owner).__name__}.{name}' if owner is not None else name


async def _call(handler: Handler, event: BaseEvent[Any]) -> Any:
    result = handler(event)
    if inspect.isawaitable(result):
        result = await result
    return result


class SessionEventBus(EventBus):
    """bubus EventBus with single-owner intents, veto hooks and generation-aware observers."""

    def __init__(self, name: str | None = None, **kwargs: Any):
        super().__init__(name=name or f'SessionEventBus_{uuid4().hex[:8]}', **kwargs)
        self._generation = 0
        self._generations: OrderedDict[str, int] = OrderedDict()
        self._owners: dict[str, tuple[Handler, Handler]] = {}
        self._hooks: dict[str, list[Handler]] = {}

    # region - ========== Dispatch ==========

    def dispatch(self, event: T_Event) -> T_Event:
        """Stamp the event with the next generation number and hand it to bubus."""
        self._generation += 1
        self._generations[event.event_id] = self._generation
        while len(self._generations) > _GENERATION_HISTORY:
            self._generations.popitem(last=False)
        return super().dispatch(event)

    def generation_of(self, event: BaseEvent[Any]) -> int:
        """Return the generation an event was dispatched with, or 0 if unknown."""
        return self._generations.get(event.event_id, 0)

    @property
    def generation(self) -> int:
        return self._generation

    # endregion

    # region - ========== Notification observers ==========

    def subscribe(self, event_cls: type[BaseEvent[Any]], handler: Handler) -> Handler:
        """Register an observer for every future event of ``event_cls``.

        Args:
            event_cls: Event class to observe.
            handler: Sync or async callable receiving the event.

        Returns:
            The callable actually registered on the bus.
        """
        registered_at = self._generation
        bus = self

        async def observer(event: BaseEvent[Any]) -> Any:
            if bus.generation_of(event) <= registered_at:
                return None
            return await _call(handler, event)

        observer.__name__ = f'{_handler_label(handler)}#{uuid4().hex[:4]}'
        observer.__wrapped_handler__ = handler  # type: ignore[attr-defined]
        self.on(event_cls, observer)
        return observer

    def unsubscribe(self, event_cls: type[BaseEvent[Any]], handler: Handler) -> None:
        """Remove an observer, given either the original handler or the registered callable."""
        registered_handlers = self.handlers.get(event_cls.__name__, [])
        for registered in list(registered_handlers):
            if registered is handler or getattr(registered, '__wrapped_handler__', None) == handler:
                registered_handlers.remove(registered)
                return

    # endregion

    # region - ========== Intent owners and veto hooks ==========

    def own(self, event_cls: type[BaseEvent[Any]], handler: Handler) -> None:
        """Register ``handler`` as the single executor of an intent.

        Raises:
            HandlerConflictError: If the intent already has an owner.
        """
        key = event_cls.__name__
        if key in self._owners:
            existing = _handler_label(self._owners[key][0])
            raise HandlerConflictError(
                f'{key} is already owned by {existing}, refusing {_handler_label(handler)}',
                details={'event_type': key},
            )

        bus = self

        async def owner(event: BaseEvent[Any]) -> Any:
            for hook in list(bus._hooks.get(key, [])):
                await _call(hook, event)
            return await _call(handler, event)

        owner.__name__ = f'{_handler_label(handler)}[owner]'
        self._owners[key] = (handler, owner)
        self.on(event_cls, owner)

    def disown(self, event_cls: type[BaseEvent[Any]]) -> None:
        key = event_cls.__name__
        entry = self._owners.pop(key, None)
        if entry is None:
            return
        registered_handlers = self.handlers.get(key, [])
        if entry[1] in registered_handlers:
            registered_handlers.remove(entry[1])

    def owner_of(self, event_cls: type[BaseEvent[Any]]) -> Handler | None:
        entry = self._owners.get(event_cls.__name__)
        return entry[0] if entry else None

    def before(self, event_cls: type[BaseEvent[Any]], hook: Handler) -> None:
        """Run ``hook`` before the owner of ``event_cls``; raising from it vetoes the intent."""
        self._hooks.setdefault(event_cls.__name__, []).append(hook)

    def remove_hook(self, event_cls: type[BaseEvent[Any]], hook: Handler) -> None:
        hooks = self._hooks.get(event_cls.__name__, [])
        if hook in hooks:
            hooks.remove(hook)

    # endregion

    async def expect(
        self,
        event_type: type[T_Event],
        predicate: Callable[[T_Event], bool] | None = None,
        timeout: float | None = None,
    ) -> T_Event:
        """Wait for the next ``event_type`` event (dispatched after this call) matching ``predicate``.

        Args:
            event_type: Event class to wait for.
            predicate: Optional filter; the first event for which it returns True wins.
            timeout: Seconds to wait. None waits forever.

        Returns:
            The matching event.

        Raises:
            TimeoutError: If no matching event arrives in time.
        """
        future: asyncio.Future[T_Event] = asyncio.get_running_loop().create_future()

        async def expect_handler(event: T_Event) -> None:
            if future.done():
                return
            if predicate is None or predicate(event):
                future.set_result(event)

        expect_handler.__name__ = f'expect_{event_type.__name__}_{uuid4().hex[:6]}'
        self.subscribe(event_type, expect_handler)
        try:
            return await asyncio.wait_for(future, timeout=timeout)
        finally:
            self.unsubscribe(event_type, expect_handler)
