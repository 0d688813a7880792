"""Base watchdog class for browser monitoring components."""

import logging
from typing import Any, ClassVar

from bubus import BaseEvent
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from tabwarden.browser.bus import Handler, SessionEventBus

logger = logging.getLogger(__name__)


class BaseWatchdog(BaseModel):
    """Base class for all browser watchdogs.

    Watchdogs react to events on the session bus. Handlers are discovered by
    name: ``on_<EventName>`` observes a notification listed in ``LISTENS_TO``
    and ``before_<EventName>`` runs ahead of the owner of an intent listed in
    ``VETOES`` (raising from it aborts the intent). Watchdogs never mutate
    session topology directly; they call the session's public operations.
    """

    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        extra='forbid',
        validate_assignment=False,
        revalidate_instances='never',
    )

    # Class variables to statically define the list of events relevant to each watchdog
    LISTENS_TO: ClassVar[list[type[BaseEvent[Any]]]] = []
    VETOES: ClassVar[list[type[BaseEvent[Any]]]] = []
    EMITS: ClassVar[list[type[BaseEvent[Any]]]] = []

    # Core dependencies
    event_bus: SessionEventBus = Field()
    browser_session: Any = Field()  # BrowserSession type

    _registered_handlers: list[tuple[type[BaseEvent[Any]], Handler]] = PrivateAttr(default_factory=list)
    _registered_hooks: list[tuple[type[BaseEvent[Any]], Handler]] = PrivateAttr(default_factory=list)

    @property
    def logger(self) -> logging.Logger:
        """Get the logger from the browser session."""
        return self.browser_session.logger

    @property
    def is_attached(self) -> bool:
        return bool(self._registered_handlers or self._registered_hooks)

    def attach_to_session(self) -> None:
        """Register every ``on_*`` and ``before_*`` handler on the event bus.

        Raises:
            RuntimeError: If the watchdog is already attached.
            AssertionError: If a declared event has no matching handler method.
        """
        name = type(self).__name__
        if self.is_attached:
            raise RuntimeError(f'[{name}] attach_to_session() called twice')

        for event_cls in self.LISTENS_TO:
            handler = getattr(self, f'on_{event_cls.__name__}', None)
            assert callable(handler), f'[{name}] listens to {event_cls.__name__} but has no on_{event_cls.__name__}()'
            registered = self.event_bus.subscribe(event_cls, handler)
            self._registered_handlers.append((event_cls, registered))

        for event_cls in self.VETOES:
            hook = getattr(self, f'before_{event_cls.__name__}', None)
            assert callable(hook), f'[{name}] vetoes {event_cls.__name__} but has no before_{event_cls.__name__}()'
            self.event_bus.before(event_cls, hook)
            self._registered_hooks.append((event_cls, hook))

        self.logger.debug(
            f'[{name}] Attached (listens: {[e.__name__ for e in self.LISTENS_TO]}, '
            f'vetoes: {[e.__name__ for e in self.VETOES]})'
        )

    def detach_from_session(self) -> None:
        """Remove every handler this watchdog registered."""
        for event_cls, registered in self._registered_handlers:
            self.event_bus.unsubscribe(event_cls, registered)
        for event_cls, hook in self._registered_hooks:
            self.event_bus.remove_hook(event_cls, hook)
        self._registered_handlers.clear()
        self._registered_hooks.clear()
        self.logger.debug(f'[{type(self).__name__}] Detached')
