"""
Pricing catalog service.

Keeps an in-memory pricing table sourced from a remote feed, a local cache
file and a bundled static file, refreshed on a schedule and reloaded when the
cache file changes on disk.

Usage:
    catalog = PricingCatalog(config.pricing)
    await catalog.initialize()
    pricing = catalog.get_model_pricing("claude-sonnet-4-20250514")
    ...
    await catalog.shutdown()
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

from account_dashboard.config.loader import PricingConfig
from .pricing import (
    LongContextPricing,
    ModelPricing,
    PricingTable,
    get_ephemeral_1h_price,
    get_long_context_pricing,
)

logger = logging.getLogger(__name__)


class PricingFetchError(Exception):
    """Pricing feed could not be downloaded or decoded."""


class PricingDataError(Exception):
    """A local pricing file is missing, unreadable or malformed."""


@dataclass(frozen=True)
class CatalogStatus:
    """Operational snapshot of the catalog."""
    initialized: bool
    last_updated: Optional[datetime]
    model_count: int
    next_update_eta: Optional[datetime]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "initialized": self.initialized,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
            "model_count": self.model_count,
            "next_update_eta": self.next_update_eta.isoformat() if self.next_update_eta else None,
        }


def _read_pricing_file(path: Path) -> Dict[str, Any]:
    """Read and validate a pricing JSON file.

    Raises:
        PricingDataError: If the file is missing, unreadable, not a JSON
            object, or empty
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise PricingDataError(f"Pricing file not found: {path}") from e
    except (OSError, ValueError) as e:
        raise PricingDataError(f"Failed to read pricing file {path}: {e}") from e

    if not isinstance(data, dict) or not data:
        raise PricingDataError(f"Invalid pricing data structure in {path}")
    return data


def _write_pricing_file(path: Path, data: Dict[str, Any]) -> None:
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2)


class PricingCatalog:
    """Model pricing service with a download -> cache file -> bundled file fallback chain.

    The table is replaced by a single reference swap, so readers always see a
    complete table. No public method raises: I/O failures degrade to the next
    fallback tier and unknown models resolve to None.
    """

    def __init__(
        self,
        config: Optional[PricingConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Create an uninitialized catalog.

        Args:
            config: Pricing sources and timing, defaults when omitted
            transport: Optional httpx transport used for the feed download
        """
        self.config = config or PricingConfig()
        self._transport = transport
        self._table: Optional[PricingTable] = None
        self._last_updated: Optional[datetime] = None
        self._watched_mtime: Optional[float] = None
        self._reload_task: Optional[asyncio.Task] = None
        self._tasks: List[asyncio.Task] = []
        self.running = False

    @property
    def cache_path(self) -> Path:
        return self.config.cache_path

    @property
    def table(self) -> Optional[PricingTable]:
        return self._table

    @property
    def last_updated(self) -> Optional[datetime]:
        return self._last_updated

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self, start_background: bool = True) -> None:
        """Load pricing data and start the refresh and file-watch tasks."""
        data_dir = Path(self.config.data_dir)
        try:
            if not data_dir.exists():
                data_dir.mkdir(parents=True, exist_ok=True)
                logger.info(f"Created pricing data directory: {data_dir}")
        except OSError as e:
            logger.error(f"Failed to create pricing data directory {data_dir}: {e}")
            logger.error("Pricing catalog running without pricing data")
            self._adopt(PricingTable(), None)
        else:
            await self.refresh()

        if start_background:
            self.start()

        logger.info(f"Pricing catalog initialized with {len(self._table or ())} models")

    def start(self) -> None:
        """Start the periodic refresh and cache-file watch tasks."""
        if self.running:
            return

        self.running = True
        self._tasks.append(asyncio.create_task(self._refresh_loop()))
        self._tasks.append(asyncio.create_task(self._watch_loop()))
        logger.info(
            f"Watching {self.cache_path} for changes "
            f"(polling every {self.config.watch_interval_seconds:g}s)"
        )

    async def shutdown(self) -> None:
        """Stop background tasks and any pending debounced reload."""
        self.running = False

        pending = list(self._tasks)
        if self._reload_task is not None:
            pending.append(self._reload_task)
            self._reload_task = None

        for task in pending:
            if not task.done():
                task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        self._tasks.clear()
        logger.debug("Pricing catalog background tasks stopped")

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def needs_update(self) -> bool:
        """Whether the cache file is missing or older than the refresh interval."""
        try:
            mtime = self.cache_path.stat().st_mtime
        except OSError:
            logger.info("Pricing file not found, will download")
            return True

        age = time.time() - mtime
        if age > self.config.refresh_interval_seconds:
            logger.info(f"Pricing file is {round(age / 3600)} hours old, will update")
            return True
        return False

    async def refresh(self, force: bool = False) -> None:
        """Download fresh pricing when due, otherwise load the cache file."""
        if force or self.needs_update():
            logger.info("Updating model pricing data...")
            try:
                await self._download()
            except PricingFetchError as e:
                logger.warning(f"Failed to download pricing data: {e}")
                logger.info("Using local fallback pricing data...")
                await self._use_fallback()
            return

        try:
            await self._load_cache_file()
        except PricingDataError as e:
            logger.error(f"Failed to load pricing data: {e}")
            await self._use_fallback()

    async def reload_from_file(self) -> bool:
        """Reload the cache file after an external change.

        A deleted file triggers the fallback chain. An unreadable or malformed
        file leaves the in-memory table untouched.

        Returns:
            True if a new table was adopted
        """
        if not self.cache_path.exists():
            logger.warning("Pricing file was deleted, using fallback")
            return await self._use_fallback()

        try:
            data = await asyncio.to_thread(_read_pricing_file, self.cache_path)
        except PricingDataError as e:
            logger.error(f"Failed to reload pricing data: {e}")
            logger.warning("Keeping existing pricing data in memory")
            return False

        table = PricingTable.from_raw(data)
        self._adopt(table, datetime.now())
        logger.info(f"Reloaded pricing data for {len(table)} models from file")
        return True

    def replace_table(self, table: PricingTable, last_updated: Optional[datetime] = None) -> None:
        """Swap in a pricing table supplied by the caller."""
        self._adopt(table, last_updated or datetime.now())
        logger.info(f"Pricing table replaced with {len(table)} models")

    async def _download(self) -> None:
        url = self.config.feed_url
        try:
            async with httpx.AsyncClient(
                timeout=self.config.download_timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.get(url)
        except httpx.TimeoutException as e:
            raise PricingFetchError(
                f"Download timeout after {self.config.download_timeout_seconds:g} seconds"
            ) from e
        except httpx.HTTPError as e:
            raise PricingFetchError(f"Network error: {e}") from e

        if response.status_code != 200:
            raise PricingFetchError(f"HTTP {response.status_code}: {response.reason_phrase}")

        try:
            data = response.json()
        except ValueError as e:
            raise PricingFetchError(f"Failed to parse pricing data: {e}") from e
        if not isinstance(data, dict) or not data:
            raise PricingFetchError("Failed to parse pricing data: expected a non-empty JSON object")

        table = PricingTable.from_raw(data)
        await self._persist(data)
        self._adopt(table, datetime.now())
        logger.info(f"Downloaded pricing data for {len(table)} models")

    async def _load_cache_file(self) -> None:
        data = await asyncio.to_thread(_read_pricing_file, self.cache_path)
        table = PricingTable.from_raw(data)
        try:
            last_updated = datetime.fromtimestamp(self.cache_path.stat().st_mtime)
        except OSError:
            last_updated = datetime.now()
        self._adopt(table, last_updated)
        logger.info(f"Loaded pricing data for {len(table)} models from cache")

    async def _use_fallback(self) -> bool:
        fallback_path = Path(self.config.fallback_file)
        try:
            data = await asyncio.to_thread(_read_pricing_file, fallback_path)
        except PricingDataError as e:
            logger.error(f"Fallback pricing unavailable: {e}")
            if self._table is None:
                self._adopt(PricingTable(), None)
                logger.error("Pricing catalog running without pricing data")
            else:
                logger.warning("Keeping existing pricing data in memory")
            return False

        logger.info("Copying fallback pricing data to data directory...")
        table = PricingTable.from_raw(data)
        await self._persist(data)
        self._adopt(table, datetime.now())
        logger.warning(f"Using fallback pricing data for {len(table)} models")
        return True

    async def _persist(self, data: Dict[str, Any]) -> None:
        try:
            await asyncio.to_thread(_write_pricing_file, self.cache_path, data)
        except OSError as e:
            logger.warning(f"Failed to write pricing cache file {self.cache_path}: {e}")

    def _adopt(self, table: PricingTable, last_updated: Optional[datetime]) -> None:
        self._table = table
        self._last_updated = last_updated
        self._watched_mtime = self._current_mtime()

    # ------------------------------------------------------------------
    # Background tasks
    # ------------------------------------------------------------------

    def _current_mtime(self) -> Optional[float]:
        try:
            return self.cache_path.stat().st_mtime
        except OSError:
            return None

    def check_for_file_change(self) -> bool:
        """Poll the cache file and schedule a debounced reload if it changed.

        Returns:
            True if a change was detected
        """
        mtime = self._current_mtime()
        if mtime == self._watched_mtime:
            return False

        self._watched_mtime = mtime
        logger.debug(f"Detected change in pricing file (mtime: {mtime})")
        self._schedule_reload()
        return True

    def _schedule_reload(self) -> None:
        if self._reload_task is not None and not self._reload_task.done():
            self._reload_task.cancel()
        self._reload_task = asyncio.create_task(self._debounced_reload())

    async def _debounced_reload(self) -> None:
        await asyncio.sleep(self.config.reload_debounce_seconds)
        logger.info("Reloading pricing data due to file change...")
        await self.reload_from_file()

    async def _refresh_loop(self) -> None:
        while self.running:
            try:
                await asyncio.sleep(self.config.refresh_interval_seconds)
                if not self.running:
                    break
                await self.refresh()
            except asyncio.CancelledError:
                logger.debug("Pricing refresh task cancelled")
                break
            except Exception as e:
                logger.error(f"Pricing refresh task error: {e}")

    async def _watch_loop(self) -> None:
        while self.running:
            try:
                await asyncio.sleep(self.config.watch_interval_seconds)
                if not self.running:
                    break
                self.check_for_file_change()
            except asyncio.CancelledError:
                logger.debug("Pricing file watch task cancelled")
                break
            except Exception as e:
                logger.error(f"Pricing file watch task error: {e}")

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_model_pricing(self, model_id: str) -> Optional[ModelPricing]:
        """Resolve pricing for a model, or None when nothing matches."""
        table = self._table
        if table is None:
            return None
        return table.get_pricing(model_id)

    def get_ephemeral_1h_price(self, model_id: str) -> Decimal:
        return get_ephemeral_1h_price(model_id)

    def get_long_context_pricing(self, model_id: str) -> Optional[LongContextPricing]:
        return get_long_context_pricing(model_id)

    def get_status(self) -> CatalogStatus:
        """Snapshot of load state for operational visibility."""
        table = self._table
        last_updated = self._last_updated
        next_update = None
        if last_updated is not None:
            next_update = last_updated + timedelta(seconds=self.config.refresh_interval_seconds)
        return CatalogStatus(
            initialized=table is not None,
            last_updated=last_updated,
            model_count=len(table) if table is not None else 0,
            next_update_eta=next_update,
        )
