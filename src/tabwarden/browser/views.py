"""Browser view models and the error hierarchy shared by the session and its watchdogs."""

from typing import TYPE_CHECKING, Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_serializer

if TYPE_CHECKING:
    from bubus import BaseEvent

TargetID = str


class TabInfo(BaseModel):
    """Represents information about a browser tab."""

    model_config = ConfigDict(
        extra='forbid',
        validate_by_name=True,
        validate_by_alias=True,
    )

    url: str
    title: str
    target_id: TargetID = Field(serialization_alias='tab_id', validation_alias=AliasChoices('tab_id', 'target_id'))

    @field_serializer('target_id')
    def serialize_target_id(self, target_id: TargetID, _info: Any) -> str:
        return target_id[-4:]


class PageInfo(BaseModel):
    """Viewport and scroll geometry of the focused page."""

    viewport_width: int
    viewport_height: int
    page_width: int
    page_height: int
    scroll_x: int = 0
    scroll_y: int = 0

    @property
    def pixels_above(self) -> int:
        return self.scroll_y

    @property
    def pixels_below(self) -> int:
        return max(self.page_height - self.viewport_height - self.scroll_y, 0)


class BrowserStateSummary(BaseModel):
    """Snapshot of the session handed to the agent loop.

    The selector map is produced by the DOM extraction layer and only carried
    through here; the session never builds it.
    """

    url: str
    title: str
    screenshot: str | None = None  # base64 encoded
    tabs: list[TabInfo] = Field(default_factory=list)
    current_target_id: TargetID | None = None
    page_info: PageInfo | None = None
    selector_map: dict[int, str] = Field(default_factory=dict)
    closed_popup_messages: list[str] = Field(default_factory=list)


class BrowserError(Exception):
    """Base error for everything raised by the browser layer.

    Carries structured ``details`` and the event being handled when the error
    happened so callers can log or report it without parsing the message.
    """

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        event: 'BaseEvent[Any] | None' = None,
    ):
        """Initialize a BrowserError.

        Args:
            message: Technical error message for logging and debugging
            details: Additional metadata for debugging
            event: The browser event that triggered this error
        """
        self.message = message
        self.details = details
        self.while_handling_event = event
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f'{self.message} ({self.details})'
        elif self.while_handling_event is not None:
            return f'{self.message} (while handling: {self.while_handling_event.event_type})'
        else:
            return self.message


class SessionNotStartedError(BrowserError):
    """An action was attempted while the session is not running."""


class NavigationBlockedError(BrowserError):
    """Navigation was vetoed by the security policy."""


# Kept for callers that catch the older name
URLNotAllowedError = NavigationBlockedError


class TabNotFoundError(BrowserError):
    """A target id does not refer to an open tab."""


class BrowserActionError(BrowserError):
    """The substrate failed to execute an action (navigate, click, type, ...)."""


class ElementNotFoundError(BrowserActionError):
    """An element description could not be resolved on the current page."""


class DownloadVerificationError(BrowserError):
    """A finished download could not be confirmed on disk."""


class DialogHandlingError(BrowserError):
    """A native dialog could not be accepted or dismissed."""


class BrowserStartError(BrowserError):
    """The browser could not be launched or connected."""


class HandlerConflictError(BrowserError):
    """A second owner tried to register for an intent that already has one."""
