"""Network reachability signals.

NetworkMonitor is the channel the reconnection manager listens to. Hosts with
a native connectivity API feed it with update(); PollingNetworkMonitor probes
a URL itself.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

import httpx

from tether.shared.events import EventChannel

logger = logging.getLogger(__name__)


class Connectivity(str, Enum):
    WIFI = "wifi"
    MOBILE = "mobile"
    ETHERNET = "ethernet"
    VPN = "vpn"
    OTHER = "other"
    NONE = "none"


@dataclass(frozen=True)
class ConnectivityChange:
    """A change in network connectivity."""

    connectivity: Connectivity

    @property
    def reachable(self) -> bool:
        return self.connectivity is not Connectivity.NONE


class NetworkMonitor(EventChannel[ConnectivityChange]):
    """Publishes connectivity changes, suppressing repeats."""

    def __init__(self, name: str = "network"):
        super().__init__(name)
        self.current: ConnectivityChange | None = None

    async def update(self, connectivity: Connectivity) -> None:
        """Record the latest connectivity and publish it if it changed."""
        change = ConnectivityChange(connectivity)
        if change == self.current:
            return
        self.current = change
        logger.debug(f"Connectivity changed to {connectivity.value}")
        await self.publish(change)


class PollingNetworkMonitor(NetworkMonitor):
    """Derives reachability from periodic HTTP probes of a URL.

    Any HTTP response, whatever its status, counts as reachable. Transport
    level failures count as unreachable.
    """

    def __init__(
        self,
        probe_url: str,
        interval: float = 10.0,
        timeout: float = 5.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        super().__init__(name="network.polling")
        self.probe_url = probe_url
        self.interval = interval
        self.timeout = timeout
        self._http_client = http_client or httpx.AsyncClient()
        self._owns_client = http_client is None
        self._poll_task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    async def start(self) -> None:
        """Start polling. Safe to call multiple times."""
        if self.running:
            return
        self._poll_task = asyncio.create_task(
            self._poll_loop(), name=f"network_probe_{self.probe_url}"
        )

    async def stop(self) -> None:
        """Stop polling and release the HTTP client if we created it."""
        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None
        if self._owns_client:
            await self._http_client.aclose()

    async def probe(self) -> Connectivity:
        """Run a single reachability probe and publish the result."""
        try:
            await self._http_client.head(self.probe_url, timeout=self.timeout)
            connectivity = Connectivity.OTHER
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.debug(f"Probe of {self.probe_url} failed: {e}")
            connectivity = Connectivity.NONE
        await self.update(connectivity)
        return connectivity

    async def _poll_loop(self) -> None:
        while True:
            await self.probe()
            await asyncio.sleep(self.interval)
