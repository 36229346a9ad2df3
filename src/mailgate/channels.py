"""Rendezvous channels carrying action events from the rules engine."""

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any, Generic, TypeVar

from .models import ActionDrop, ActionSend

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ChannelClosedError(Exception):
    """Raised when sending on a closed channel."""


class ChannelTimeoutError(Exception):
    """Raised when no consumer receives an event within the send timeout."""


class RendezvousChannel(Generic[T]):
    """Unbuffered channel: a send completes only once the item is received.

    Each send waits on its own handoff future. A send that times out or is
    cancelled withdraws its item, so no receiver ever sees it.
    """

    def __init__(self, name: str, send_timeout: float | None = None) -> None:
        """Initialize the channel.

        Args:
            name: Channel name, used in logs and errors.
            send_timeout: Seconds a send may wait for its receiver. None waits forever.
        """
        self.name = name
        self.send_timeout = send_timeout
        self._queue: asyncio.Queue[tuple[T, asyncio.Future[None]]] = asyncio.Queue()
        self._pending = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Number of sends still in progress on this channel."""
        return self._pending

    async def send(self, item: T) -> None:
        """Hand an item to the consumer and wait until it has been received.

        Raises:
            ChannelClosedError: If the channel was closed.
            ChannelTimeoutError: If nobody received the item in time.
        """
        if self._closed:
            raise ChannelClosedError(f"send on closed channel '{self.name}'")

        handoff: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((item, handoff))
        self._pending += 1

        try:
            await asyncio.wait_for(handoff, timeout=self.send_timeout)
        except asyncio.TimeoutError as e:
            if handoff.done() and not handoff.cancelled():
                return  # received right at the deadline
            logger.debug(f"Withdrew {self.name} event after {self.send_timeout}s")
            raise ChannelTimeoutError(
                f"no receiver on channel '{self.name}' after {self.send_timeout}s"
            ) from e
        finally:
            self._pending -= 1
            if not handoff.done():
                handoff.cancel()

    async def receive(self) -> T:
        """Wait for the next item that is still on offer and release its sender."""
        while True:
            item, handoff = await self._queue.get()
            if handoff.done():
                continue  # withdrawn by a timed out or cancelled send
            handoff.set_result(None)
            return item

    def close(self) -> None:
        self._closed = True


class ActionChannels:
    """The drop, send and accept channels for one rules evaluation."""

    def __init__(self, send_timeout: float | None = None) -> None:
        self.drop: RendezvousChannel[ActionDrop] = RendezvousChannel("drop", send_timeout)
        self.send: RendezvousChannel[ActionSend] = RendezvousChannel("send", send_timeout)
        self.accept: RendezvousChannel[bool] = RendezvousChannel("accept", send_timeout)
        self._done = asyncio.Event()

    @property
    def channels(self) -> tuple[RendezvousChannel[Any], ...]:
        return (self.drop, self.send, self.accept)

    def close(self) -> None:
        """Mark the evaluation finished; no further events will be sent."""
        for channel in self.channels:
            channel.close()
        self._done.set()

    async def events(self) -> AsyncIterator[tuple[str, Any]]:
        """Yield (channel name, item) pairs in the order they were sent.

        Stops once the bundle is closed and no send is left waiting.
        """
        while True:
            receivers = {
                asyncio.ensure_future(channel.receive()): channel
                for channel in self.channels
            }
            done_waiter = asyncio.ensure_future(self._done.wait())
            try:
                done, _ = await asyncio.wait(
                    [*receivers, done_waiter], return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                for task in [*receivers, done_waiter]:
                    if not task.done():
                        task.cancel()

            received = [task for task in receivers if task in done]
            for task in received:
                channel = receivers[task]
                item = task.result()
                logger.debug(f"Received {channel.name} event: {item!r}")
                yield channel.name, item

            if not received and done_waiter in done:
                if not any(channel.pending for channel in self.channels):
                    return
