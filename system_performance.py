"""Periodic system performance sampling."""

import asyncio
import logging
from typing import Optional

import psutil

from constants import DEFAULT_POLL_SECONDS
from models import SystemPerformanceSample
from topics import ResourceName

logger = logging.getLogger(__name__)


class SystemPerformanceManager:
    """Samples CPU, memory and disk utilization on a fixed interval."""

    def __init__(self, location_id: str, poll_seconds: int = DEFAULT_POLL_SECONDS, listener=None, disk_path: str = "/"):
        self.location_id = location_id
        self.poll_seconds = poll_seconds if poll_seconds and poll_seconds > 0 else DEFAULT_POLL_SECONDS
        self.listener = listener
        self.disk_path = disk_path
        self._task: Optional[asyncio.Task] = None

    @property
    def is_started(self) -> bool:
        return self._task is not None and not self._task.done()

    def set_data_message_listener(self, listener) -> bool:
        if listener is None:
            return False
        self.listener = listener
        return True

    def collect_sample(self) -> SystemPerformanceSample:
        """Read current utilization values."""
        cpu = psutil.cpu_percent(interval=None)
        mem = psutil.virtual_memory().percent
        disk = psutil.disk_usage(self.disk_path).percent
        logger.debug(f"System Performance - CPU: {cpu}%, Memory: {mem}%, Disk: {disk}%")
        return SystemPerformanceSample(
            location_id=self.location_id,
            cpu_util=float(cpu),
            mem_util=float(mem),
            disk_util=float(disk),
        )

    def handle_telemetry(self):
        """Collect one sample and hand it to the listener."""
        sample = self.collect_sample()
        if self.listener is not None:
            self.listener.handle_system_performance_message(ResourceName.GDA_SYSTEM_PERF_MSG_RESOURCE, sample)
        return sample

    async def start(self) -> bool:
        if self.is_started:
            logger.info("SystemPerformanceManager is already started")
            return True
        # prime the cpu counter so the first reading is meaningful
        psutil.cpu_percent(interval=None)
        self._task = asyncio.create_task(self._run(), name="system_perf")
        logger.info(f"SystemPerformanceManager started (poll every {self.poll_seconds}s)")
        return True

    async def stop(self) -> bool:
        task, self._task = self._task, None
        if task is None:
            logger.info("SystemPerformanceManager is not running")
            return True
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("SystemPerformanceManager stopped")
        return True

    async def _run(self):
        while True:
            await asyncio.sleep(self.poll_seconds)
            try:
                self.handle_telemetry()
            except Exception as e:
                logger.error(f"System performance sampling error: {e}", exc_info=True)
