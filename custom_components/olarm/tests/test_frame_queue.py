"""
Tests for DeviceFrameQueue: per-device ordering, parallel handling across
devices, error isolation and shutdown.
"""

from __future__ import annotations

import asyncio
import time
import unittest
from unittest.mock import MagicMock

from custom_components.olarm.frame_queue import DeviceFrameQueue


class TestDeviceFrameQueue(unittest.IsolatedAsyncioTestCase):

    async def test_frames_handled_in_arrival_order(self):
        seen = []
        queue = DeviceFrameQueue(lambda device_id, payload: seen.append((device_id, payload)))

        for i in range(5):
            queue.submit("D1", i)
        await queue.async_drain("D1")

        self.assertEqual(seen, [("D1", i) for i in range(5)])
        await queue.shutdown()

    async def test_async_handler_keeps_order(self):
        seen = []

        async def handler(device_id, payload):
            # Later frames finish faster; order must still hold
            await asyncio.sleep(0.01 * (5 - payload))
            seen.append(payload)

        queue = DeviceFrameQueue(handler)
        for i in range(5):
            queue.submit("D1", i)
        await queue.async_drain("D1")

        self.assertEqual(seen, [0, 1, 2, 3, 4])
        await queue.shutdown()

    async def test_different_devices_run_in_parallel(self):
        """A slow frame for device 1 must not hold up device 2."""
        end_times = {}

        async def handler(device_id, payload):
            await asyncio.sleep(0.1)
            end_times[device_id] = time.monotonic()

        queue = DeviceFrameQueue(handler)
        start = time.monotonic()
        queue.submit("D1", "a")
        queue.submit("D2", "b")
        await asyncio.gather(queue.async_drain("D1"), queue.async_drain("D2"))

        self.assertLess(max(end_times.values()) - start, 0.18)
        await queue.shutdown()

    async def test_submit_does_not_block(self):
        started = asyncio.Event()
        release = asyncio.Event()

        async def handler(device_id, payload):
            started.set()
            await release.wait()

        queue = DeviceFrameQueue(handler)
        queue.submit("D1", 1)
        await started.wait()
        # Worker is busy; submit must still return immediately
        queue.submit("D1", 2)
        release.set()
        await queue.async_drain("D1")
        await queue.shutdown()

    async def test_handler_error_does_not_stop_worker(self):
        handler = MagicMock(side_effect=[RuntimeError("bad frame"), None])
        queue = DeviceFrameQueue(handler)

        with self.assertLogs("custom_components.olarm.frame_queue", level="ERROR"):
            queue.submit("D1", 1)
            queue.submit("D1", 2)
            await queue.async_drain("D1")

        self.assertEqual(handler.call_count, 2)
        await queue.shutdown()

    async def test_drain_unknown_device_returns(self):
        queue = DeviceFrameQueue(MagicMock())
        await asyncio.wait_for(queue.async_drain("nope"), timeout=1)

    async def test_remove_stops_worker(self):
        handler = MagicMock()
        queue = DeviceFrameQueue(handler)
        queue.submit("D1", 1)
        await queue.async_drain("D1")

        await queue.remove("D1")
        self.assertNotIn("D1", queue._workers)

        # A later frame starts a fresh worker
        queue.submit("D1", 2)
        await queue.async_drain("D1")
        self.assertEqual(handler.call_count, 2)
        await queue.shutdown()

    async def test_shutdown_cancels_workers_and_drops_frames(self):
        handler = MagicMock()
        queue = DeviceFrameQueue(handler)
        queue.submit("D1", 1)
        queue.submit("D2", 1)
        await queue.async_drain("D1")
        await queue.async_drain("D2")

        await queue.shutdown()
        queue.submit("D1", 2)
        await asyncio.sleep(0.02)

        self.assertEqual(handler.call_count, 2)
        self.assertEqual(queue._workers, {})
