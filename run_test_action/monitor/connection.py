"""One physical subscription to the shared event stream."""

import codecs
import logging
from collections.abc import AsyncGenerator, Mapping
from dataclasses import dataclass, field

import aiohttp
from pydantic import SecretStr

from run_test_action.models.job import SubjectKind

log = logging.getLogger(__name__)

DEFAULT_EVENT_TYPE = "message"
STREAM_PATHS: Mapping[SubjectKind, str] = {
    "test": "/api/v1/tests/monitor/stream?include_queued=true",
    "workflow": "/api/v1/monitor/stream/unified",
}


@dataclass(frozen=True, kw_only=True)
class Opened:
    """The subscription was accepted by the server."""


@dataclass(frozen=True, kw_only=True)
class Received:
    """A complete event arrived on the stream."""

    event_type: str
    data: str


@dataclass(frozen=True, kw_only=True)
class Closed:
    """The subscription ended. Errors and clean closes look the same."""

    detail: str


type Signal = Opened | Received | Closed


@dataclass(kw_only=True)
class EventStreamDecoder:
    """Incremental decoder for the ``text/event-stream`` framing.

    Text is fed as it arrives, in chunks of any size; complete events are
    returned as ``(event_type, data)`` pairs once their blank line is seen.
    """

    _buffer: str = field(default="", init=False)
    _event_type: str = field(default="", init=False)
    _data: list[str] = field(default_factory=list, init=False)

    def feed(self, text: str) -> list[tuple[str, str]]:
        """Consume a chunk of text and return the events it completed."""
        self._buffer += text
        *lines, self._buffer = self._buffer.split("\n")

        events: list[tuple[str, str]] = []
        for line in lines:
            if (event := self._process_line(line.removesuffix("\r"))) is not None:
                events.append(event)
        return events

    def _process_line(self, line: str) -> tuple[str, str] | None:
        if not line:
            return self._dispatch()

        if line.startswith(":"):
            return None

        name, _, value = line.partition(":")
        value = value.removeprefix(" ")

        if name == "event":
            self._event_type = value
        elif name == "data":
            self._data.append(value)
        return None

    def _dispatch(self) -> tuple[str, str] | None:
        event_type = self._event_type or DEFAULT_EVENT_TYPE
        data = self._data
        self._event_type = ""
        self._data = []
        if not data and event_type == DEFAULT_EVENT_TYPE:
            return None
        return event_type, "\n".join(data)


@dataclass(kw_only=True)
class ConnectionAttempt:
    """Owns a single GET subscription to the event stream.

    ``signals`` yields Opened once the server accepts the request, a Received
    per event, and exactly one Closed at the end. Afterwards the attempt is
    finished and calling ``signals`` again yields nothing. ``close`` is
    synchronous and idempotent.
    """

    sequence: int
    url: str
    token: SecretStr = field(repr=False)
    session: aiohttp.ClientSession = field(repr=False)
    timeout: aiohttp.ClientTimeout = field(
        default_factory=lambda: aiohttp.ClientTimeout(
            total=None, sock_connect=30, sock_read=90
        )
    )

    _response: aiohttp.ClientResponse | None = field(
        default=None, init=False, repr=False
    )
    _finished: bool = field(default=False, init=False)

    @property
    def finished(self) -> bool:
        """Whether the attempt has closed or been disposed."""
        return self._finished

    async def signals(self) -> AsyncGenerator[Signal, None]:
        """Open the subscription and yield its signals until it closes."""
        if self._finished:
            return

        try:
            opened = await self._open()
            if isinstance(opened, str):
                detail = opened
            else:
                yield Opened()
                detail = "stream ended by server"
                try:
                    async for event_type, data in self._events(opened):
                        yield Received(event_type=event_type, data=data)
                except (aiohttp.ClientError, TimeoutError) as exc:
                    detail = f"stream interrupted: {_describe(exc)}"

            self._finished = True
            yield Closed(detail=detail)
        finally:
            self.close()

    def close(self) -> None:
        """Release the underlying connection."""
        self._finished = True
        if self._response is not None:
            self._response.close()
            self._response = None

    async def _open(self) -> aiohttp.ClientResponse | str:
        """Send the subscription request.

        Returns the accepted response, or a detail string describing why the
        server could not be subscribed to.
        """
        headers = {
            "Authorization": f"Bearer {self.token.get_secret_value()}",
            "Accept": "text/event-stream",
            "Cache-Control": "no-cache",
        }
        try:
            response = await self.session.get(
                self.url, headers=headers, timeout=self.timeout
            )
        except (aiohttp.ClientError, TimeoutError) as exc:
            return f"connection failed: {_describe(exc)}"

        self._response = response
        if response.status != 200:
            try:
                text = await response.text()
            except (aiohttp.ClientError, TimeoutError):
                text = ""
            return f"HTTP {response.status} {text}".strip()

        log.debug("Stream attempt #%d opened: %s", self.sequence, self.url)
        return response

    async def _events(
        self, response: aiohttp.ClientResponse
    ) -> AsyncGenerator[tuple[str, str], None]:
        decoder = EventStreamDecoder()
        text_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        async for chunk in response.content.iter_any():
            for event in decoder.feed(text_decoder.decode(chunk)):
                yield event


def _describe(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


def stream_url(base_url: str, subject: SubjectKind) -> str:
    """URL of the event stream carrying status for the given kind of job."""
    return f"{base_url}{STREAM_PATHS[subject]}"
