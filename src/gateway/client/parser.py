"""Incremental parser for Server-Sent Events."""

from dataclasses import dataclass

SSE_DATA_FIELD = "data"
SSE_EVENT_FIELD = "event"
DEFAULT_EVENT_TYPE = "message"


@dataclass(frozen=True)
class ServerEvent:
    """A dispatched SSE event."""

    event: str
    data: str


class EventStreamParser:
    """Turns arbitrarily split SSE text into complete events.

    Network reads do not line up with event boundaries, so partial lines are
    kept until the rest arrives. Only ``event`` and ``data`` fields are
    interpreted; comments and other fields are dropped.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._event_type: str | None = None
        self._data_lines: list[str] = []

    def feed(self, text: str) -> list[ServerEvent]:
        """Consume a piece of the stream.

        Args:
            text: Next decoded piece of the response body.

        Returns:
            Events completed by this piece, in stream order.
        """
        self._buffer += text
        events: list[ServerEvent] = []

        while True:
            line, sep, rest = self._buffer.partition("\n")
            if not sep:
                break
            self._buffer = rest
            event = self._process_line(line.removesuffix("\r"))
            if event is not None:
                events.append(event)

        return events

    def flush(self) -> list[ServerEvent]:
        """Dispatch whatever is pending once the stream has ended."""
        events: list[ServerEvent] = []
        if self._buffer:
            line, self._buffer = self._buffer, ""
            event = self._process_line(line.removesuffix("\r"))
            if event is not None:
                events.append(event)
        event = self._dispatch()
        if event is not None:
            events.append(event)
        return events

    def _process_line(self, line: str) -> ServerEvent | None:
        if not line:
            return self._dispatch()

        if line.startswith(":"):
            # Comment, used for keep-alive pings
            return None

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if field == SSE_DATA_FIELD:
            self._data_lines.append(value)
        elif field == SSE_EVENT_FIELD:
            self._event_type = value
        return None

    def _dispatch(self) -> ServerEvent | None:
        event_type = self._event_type or DEFAULT_EVENT_TYPE
        data_lines = self._data_lines
        self._event_type = None
        self._data_lines = []
        if not data_lines:
            return None
        return ServerEvent(event=event_type, data="\n".join(data_lines))
