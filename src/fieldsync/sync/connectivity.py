"""Online/offline signal for the sync engine."""

import asyncio
import logging
from typing import Awaitable, Callable

from fieldsync.logging import connectivity_logger, log_connectivity_change

logger = logging.getLogger(__name__)

ConnectivityCallback = Callable[[bool], None]


class ConnectivityMonitor:
    """Tracks network reachability and notifies observers on transitions.

    The state can be fed directly with set_online() or by running the
    probe loop, which calls an async health check on a fixed interval.

    Example:
        monitor = ConnectivityMonitor(probe=client.check_health)
        unsubscribe = monitor.observe(lambda online: print(online))
        await monitor.run()
    """

    def __init__(
        self,
        probe: Callable[[], Awaitable[bool]] | None = None,
        interval: float = 15.0,
        initial: bool = True,
    ) -> None:
        """Initialize the monitor.

        Args:
            probe: Async callable returning True when the backend is reachable
            interval: Seconds between probes in run()
            initial: Assumed state before the first signal
        """
        self._probe = probe
        self.interval = interval
        self._online = initial
        self._callbacks: list[ConnectivityCallback] = []
        self._running = False

    @property
    def is_online(self) -> bool:
        """Current reachability state."""
        return self._online

    def observe(self, callback: ConnectivityCallback) -> Callable[[], None]:
        """Register a callback for online/offline transitions.

        Args:
            callback: Called with True on coming online, False on going offline

        Returns:
            A callable that deregisters the callback
        """
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def set_online(self, online: bool) -> None:
        """Feed a reachability reading; observers hear only about changes."""
        if online == self._online:
            return
        self._online = online
        log_connectivity_change(connectivity_logger(), online)
        for callback in list(self._callbacks):
            try:
                callback(online)
            except Exception as e:
                logger.error("Connectivity callback failed: %s", e)

    async def probe(self) -> bool:
        """Run the health check once and record the result."""
        if self._probe is None:
            return self._online
        try:
            online = await self._probe()
        except Exception as e:
            logger.warning("Connectivity probe failed: %s", e)
            online = False
        self.set_online(online)
        return online

    async def run(self) -> None:
        """Probe until stop() is called."""
        self._running = True
        while self._running:
            await self.probe()
            if not self._running:
                break
            await asyncio.sleep(self.interval)

    def stop(self) -> None:
        """Stop the probe loop after its current iteration."""
        self._running = False
