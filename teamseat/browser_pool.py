"""Bounded pool of long-lived Chromium processes.

Callers lease a browser, open isolated contexts on it and release it when
done; the process stays up for the next lease. Accounts that need a
disk-persistent login get their own browser through ``profile_context``,
which is closed (never pooled) when the caller leaves the block.

This module is the only place that starts or stops browser processes.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, List, Optional

from playwright.async_api import Browser, BrowserContext, Page, async_playwright

from . import config
from .common_logging import info, log_event, warn
from .errors import LaunchFailure


@dataclass
class BrowserLease:
    lease_id: str
    browser: Browser
    browser_key: str
    contexts: List[BrowserContext] = field(default_factory=list)


class BrowserPool:
    def __init__(
        self,
        max_browsers: int = config.MAX_BROWSERS,
        launch_timeout_ms: int = config.LAUNCH_TIMEOUT_MS,
        headless: bool = True,
        slow_mo: int = config.SLOW_MO,
        playwright=None,
    ):
        if max_browsers < 1:
            raise ValueError("max_browsers must be >= 1")
        self.max_browsers = max_browsers
        self.launch_timeout_ms = launch_timeout_ms
        self.headless = headless
        self.slow_mo = slow_mo
        self._playwright = playwright
        self._owns_playwright = playwright is None
        self._pw_lock: Optional[asyncio.Lock] = None
        self._cond: Optional[asyncio.Condition] = None
        self._browsers: Dict[str, Browser] = {}
        self._idle: List[str] = []
        self._leases: Dict[str, BrowserLease] = {}
        self._launching = 0

    # --- internals -------------------------------------------------------
    def _condition(self) -> asyncio.Condition:
        if self._cond is None:
            self._cond = asyncio.Condition()
        return self._cond

    async def _driver(self):
        if self._pw_lock is None:
            self._pw_lock = asyncio.Lock()
        async with self._pw_lock:
            if self._playwright is None:
                self._playwright = await async_playwright().start()
        return self._playwright

    async def _launch(self) -> Browser:
        pw = await self._driver()
        return await pw.chromium.launch(headless=self.headless, slow_mo=self.slow_mo)

    def _prune_disconnected(self) -> None:
        for key in list(self._idle):
            browser = self._browsers.get(key)
            try:
                alive = browser is not None and browser.is_connected()
            except Exception:
                alive = False
            if not alive:
                self._idle.remove(key)
                self._browsers.pop(key, None)
                warn(f"Dropped disconnected browser {key} from pool")

    @property
    def size(self) -> int:
        return len(self._browsers)

    @property
    def idle_count(self) -> int:
        return len(self._idle)

    # --- public API ------------------------------------------------------
    async def acquire(self) -> BrowserLease:
        """Lease an idle browser, launching one while under capacity.

        At capacity the call waits for a release. Raises LaunchFailure when
        nothing frees up (or the launch fails) within the launch timeout.
        """
        cond = self._condition()
        loop = asyncio.get_running_loop()
        timeout = self.launch_timeout_ms / 1000
        deadline = loop.time() + timeout
        key: Optional[str] = None

        async with cond:
            while True:
                self._prune_disconnected()
                if self._idle:
                    key = self._idle.pop(0)
                    break
                if len(self._browsers) + self._launching < self.max_browsers:
                    self._launching += 1
                    break
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise LaunchFailure(f"No browser became idle within {self.launch_timeout_ms} ms")
                try:
                    await asyncio.wait_for(cond.wait(), remaining)
                except asyncio.TimeoutError:
                    raise LaunchFailure(
                        f"No browser became idle within {self.launch_timeout_ms} ms"
                    ) from None

        if key is None:
            try:
                browser = await asyncio.wait_for(self._launch(), max(0.0, deadline - loop.time()))
            except Exception as exc:
                async with cond:
                    self._launching -= 1
                    cond.notify()
                log_event({"type": "browser_launch_failed", "error": str(exc)})
                raise LaunchFailure(f"Browser launch failed: {exc}") from exc
            key = uuid.uuid4().hex[:8]
            async with cond:
                self._launching -= 1
                self._browsers[key] = browser
            info(f"Launched pooled browser {key} ({self.size}/{self.max_browsers})")

        lease = BrowserLease(lease_id=uuid.uuid4().hex, browser=self._browsers[key], browser_key=key)
        self._leases[lease.lease_id] = lease
        log_event({"type": "browser_acquired", "lease": lease.lease_id, "browser": key})
        return lease

    async def create_page(self, lease: BrowserLease) -> Page:
        """Open a fresh context on the leased browser and return its page."""
        context = await lease.browser.new_context()
        lease.contexts.append(context)
        return await context.new_page()

    async def release(self, lease_id: str) -> None:
        """Return the browser to the idle set; unknown ids are ignored."""
        lease = self._leases.pop(lease_id, None)
        if lease is None:
            return
        for context in lease.contexts:
            try:
                await context.close()
            except Exception as exc:
                warn(f"Closing leased context failed: {str(exc)[:140]}")
        lease.contexts.clear()
        cond = self._condition()
        async with cond:
            if lease.browser_key in self._browsers and lease.browser_key not in self._idle:
                self._idle.append(lease.browser_key)
            cond.notify()
        log_event({"type": "browser_released", "lease": lease_id, "browser": lease.browser_key})

    @asynccontextmanager
    async def lease(self) -> AsyncIterator[BrowserLease]:
        handle = await self.acquire()
        try:
            yield handle
        finally:
            await self.release(handle.lease_id)

    async def launch_profile(self, profile_dir: str, headless: Optional[bool] = None) -> BrowserContext:
        """Start a dedicated browser rooted at ``profile_dir``; the caller must close it."""
        os.makedirs(profile_dir, exist_ok=True)
        pw = await self._driver()
        try:
            return await asyncio.wait_for(
                pw.chromium.launch_persistent_context(
                    user_data_dir=profile_dir,
                    headless=self.headless if headless is None else headless,
                    slow_mo=self.slow_mo,
                ),
                self.launch_timeout_ms / 1000,
            )
        except Exception as exc:
            log_event({"type": "profile_launch_failed", "profile": profile_dir, "error": str(exc)})
            raise LaunchFailure(f"Persistent browser launch failed for {profile_dir}: {exc}") from exc

    @asynccontextmanager
    async def profile_context(self, profile_dir: str, headless: Optional[bool] = None) -> AsyncIterator[BrowserContext]:
        context = await self.launch_profile(profile_dir, headless=headless)
        try:
            yield context
        finally:
            try:
                await context.close()
            except Exception as exc:
                warn(f"Closing profile browser failed: {str(exc)[:140]}")

    async def close(self) -> None:
        for lease_id in list(self._leases):
            await self.release(lease_id)
        for key, browser in list(self._browsers.items()):
            try:
                await browser.close()
            except Exception as exc:
                warn(f"Closing browser {key} failed: {str(exc)[:140]}")
        self._browsers.clear()
        self._idle.clear()
        if self._owns_playwright and self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
