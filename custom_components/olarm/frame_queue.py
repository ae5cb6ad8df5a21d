"""
DeviceFrameQueue: serialises inbound frames per device.

Frames for one device are handed to the handler strictly in arrival order;
frames for different devices are handled fully in parallel. submit() never
blocks, so a connection's receive loop is never held up by frame handling.

This is a pure asyncio concurrency primitive with no HA or network dependencies.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

_LOGGER = logging.getLogger(__name__)

FrameHandler = Callable[[str, Any], Any]


class DeviceFrameQueue:
    """
    Per-device FIFO of inbound frames, each drained by its own worker task.

    The handler is a plain callable (device_id, payload). A handler failure
    is logged and the worker moves on to the next frame.
    """

    def __init__(self, handler: FrameHandler) -> None:
        self._handler = handler
        # device_id → asyncio.Queue of raw payloads
        self._queues: dict[str, asyncio.Queue] = {}
        # device_id → worker Task
        self._workers: dict[str, asyncio.Task] = {}
        self._closed = False

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def submit(self, device_id: str, payload: Any) -> None:
        """Queue *payload* for *device_id*. Dropped after shutdown."""
        if self._closed:
            _LOGGER.debug("Frame for device %s dropped, queue is shut down", device_id)
            return
        self._ensure_device(device_id)
        self._queues[device_id].put_nowait(payload)

    async def async_drain(self, device_id: str) -> None:
        """Wait until every frame queued so far for *device_id* has been handled."""
        queue = self._queues.get(device_id)
        if queue is not None:
            await queue.join()

    async def remove(self, device_id: str) -> None:
        """Stop the worker for *device_id*, discarding frames it has not handled."""
        task = self._workers.pop(device_id, None)
        self._queues.pop(device_id, None)
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel all worker tasks and drop pending frames."""
        self._closed = True
        for task in self._workers.values():
            task.cancel()
        results = await asyncio.gather(*self._workers.values(), return_exceptions=True)
        for result in results:
            if isinstance(result, Exception) and not isinstance(result, asyncio.CancelledError):
                _LOGGER.debug("DeviceFrameQueue worker error during shutdown: %s", result)
        self._workers.clear()
        self._queues.clear()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _ensure_device(self, device_id: str) -> None:
        """Create queue and worker for device_id if they do not exist yet."""
        if device_id not in self._queues:
            self._queues[device_id] = asyncio.Queue()
            self._workers[device_id] = asyncio.ensure_future(self._worker(device_id))

    async def _worker(self, device_id: str) -> None:
        """Consume frames from this device's queue indefinitely."""
        queue = self._queues[device_id]
        while True:
            payload = await queue.get()
            try:
                result = self._handler(device_id, payload)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:  # noqa: BLE001
                _LOGGER.exception("Failed to handle frame for device %s", device_id)
            finally:
                queue.task_done()
