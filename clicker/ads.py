from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Protocol

from .config import DEFAULTS
from .errors import ExternalFailure
from .models import AdminConfig, AdUnit


logger = logging.getLogger(__name__)

NO_ADS_MESSAGE = "No ads available. Please try again later."
ADS_EXHAUSTED_MESSAGE = "No ads available at this time."

OnComplete = Callable[[], None]
OnError = Callable[[str], None]


class AdProvider(Protocol):
    async def show_ad(self, on_complete: OnComplete, on_error: OnError) -> None: ...


class AdNetwork(Protocol):
    async def show(self, unit: AdUnit) -> None: ...


class _Once:
    """Lets exactly one of the two callbacks fire, at most once."""

    def __init__(self, on_complete: OnComplete, on_error: OnError):
        self._on_complete = on_complete
        self._on_error = on_error
        self.resolved = False

    def complete(self) -> None:
        if self.resolved:
            return
        self.resolved = True
        self._on_complete()

    def error(self, message: str) -> None:
        if self.resolved:
            return
        self.resolved = True
        self._on_error(message)


class TimedNetwork:
    """Networks without a server-side SDK: the view counts after a fixed delay."""

    def __init__(self, delay: float = DEFAULTS.demo_ad_delay_seconds):
        self.delay = delay

    async def show(self, unit: AdUnit) -> None:
        logger.info("Showing %s ad %s", unit.network, unit.block_id)
        await asyncio.sleep(self.delay)


class AdWaterfall:
    """Tries active rewarded units in order until one of them completes."""

    def __init__(self, units: List[AdUnit], networks: Dict[str, AdNetwork]):
        self.units = units
        self.networks = networks

    def active_units(self) -> List[AdUnit]:
        return [u for u in self.units if u.active and u.type == "rewarded"]

    async def show_ad(self, on_complete: OnComplete, on_error: OnError) -> None:
        once = _Once(on_complete, on_error)
        units = self.active_units()
        if not units:
            once.error(NO_ADS_MESSAGE)
            return
        for unit in units:
            network = self.networks.get(unit.network)
            if network is None:
                logger.warning("Ad unit %s uses unknown network %s", unit.id, unit.network)
                continue
            try:
                await network.show(unit)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Ad failed for unit %s (%s)", unit.id, unit.network)
                continue
            once.complete()
            return
        once.error(ADS_EXHAUSTED_MESSAGE)


class DemoAdProvider:
    def __init__(self, delay: float = DEFAULTS.demo_ad_delay_seconds):
        self.delay = delay

    async def show_ad(self, on_complete: OnComplete, on_error: OnError) -> None:
        once = _Once(on_complete, on_error)
        await asyncio.sleep(self.delay)
        once.complete()


class ReportedAdProvider:
    """The web client shows the ad itself and reports whether it was watched."""

    def __init__(self, watched: bool, error: Optional[str] = None):
        self.watched = watched
        self.error = error

    async def show_ad(self, on_complete: OnComplete, on_error: OnError) -> None:
        once = _Once(on_complete, on_error)
        if self.watched:
            once.complete()
        else:
            once.error(self.error or "Ad was not completed.")


async def watch_ad(provider: AdProvider) -> None:
    """Show one ad and raise ExternalFailure unless it completed."""
    outcome: List[Optional[str]] = []
    await provider.show_ad(lambda: outcome.append(None), outcome.append)
    if not outcome:
        raise ExternalFailure("Ad was not completed.")
    if outcome[0] is not None:
        raise ExternalFailure(outcome[0])


def provider_for(admin: AdminConfig, networks: Optional[Dict[str, AdNetwork]] = None) -> AdProvider:
    if admin.demo_mode:
        return DemoAdProvider()
    if networks is None:
        networks = {"Adsterra": TimedNetwork(), "Custom": TimedNetwork()}
    return AdWaterfall(admin.ad_units, networks)
