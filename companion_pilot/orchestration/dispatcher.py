from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Awaitable, Callable, Dict, Tuple

from ..types import InboundMessage, TurnReply


logger = logging.getLogger("companion_pilot")

ChannelKey = Tuple[str, str]
TurnHandler = Callable[[InboundMessage], Awaitable[TurnReply]]


class ChannelDispatcher:
    """Serializes turns per (guild, channel) while distinct channels run concurrently.

    Each channel gets a queue and a worker task on first use; the worker retires after
    ``idle_seconds`` without new messages.
    """

    def __init__(self, handler: TurnHandler, *, idle_seconds: float = 60.0) -> None:
        self.handler = handler
        self.idle_seconds = idle_seconds
        self._queues: Dict[ChannelKey, asyncio.Queue[tuple[InboundMessage, asyncio.Future[TurnReply]]]] = {}
        self._workers: Dict[ChannelKey, asyncio.Task[None]] = {}
        self._closed = False

    @property
    def active_channels(self) -> int:
        return len(self._workers)

    def enqueue(self, message: InboundMessage) -> asyncio.Future[TurnReply]:
        """Queue a turn without awaiting, so callers fix its place in the channel order immediately."""
        if self._closed:
            raise RuntimeError("dispatcher is closed")
        loop = asyncio.get_running_loop()
        future: asyncio.Future[TurnReply] = loop.create_future()
        key = message.channel_key

        queue = self._queues.get(key)
        if queue is None:
            queue = asyncio.Queue()
            self._queues[key] = queue
            self._workers[key] = asyncio.create_task(self._worker(key, queue), name=f"channel-worker:{key[0]}:{key[1]}")
        queue.put_nowait((message, future))
        return future

    async def submit(self, message: InboundMessage) -> TurnReply:
        return await self.enqueue(message)

    async def _worker(self, key: ChannelKey, queue: asyncio.Queue[tuple[InboundMessage, asyncio.Future[TurnReply]]]) -> None:
        try:
            while True:
                try:
                    message, future = await asyncio.wait_for(queue.get(), timeout=self.idle_seconds)
                except asyncio.TimeoutError:
                    if queue.empty():
                        return
                    continue

                try:
                    if future.cancelled():
                        continue
                    try:
                        reply = await self.handler(message)
                    except asyncio.CancelledError:
                        if not future.done():
                            future.cancel()
                        raise
                    except Exception as exc:
                        if not future.done():
                            future.set_exception(exc)
                    else:
                        if not future.done():
                            future.set_result(reply)
                finally:
                    queue.task_done()
        finally:
            # Runs without awaiting, so no submit can slip in between the check and the removal.
            if self._queues.get(key) is queue:
                del self._queues[key]
                self._workers.pop(key, None)
            while not queue.empty():
                _, pending = queue.get_nowait()
                if not pending.done():
                    pending.cancel()

    async def close(self) -> None:
        self._closed = True
        workers = list(self._workers.values())
        for task in workers:
            task.cancel()
        for task in workers:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._workers.clear()
        self._queues.clear()
        logger.info("[dispatcher] closed (%s channel workers)", len(workers))
