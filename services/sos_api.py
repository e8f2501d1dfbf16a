"""
SOS Inventory API client
========================

Paginated fetches of inventory items and process (production) transactions.

- Bearer-token auth via auth.sos_auth.SosAuth
- 429 -> bounded retry with exponential backoff, then SosRateLimitError
- 401 -> SosAuthError, no retry
- Inventory pages after the first are fetched in parallel chunks
"""

import asyncio
import logging
import math
import time
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import requests

import config
from auth.sos_auth import SosAuth, SosAuthError
from services.async_utils import run_in_threads

logger = logging.getLogger(__name__)


class SosApiError(RuntimeError):
    """Raised for any failed SOS API call that is not handled by a retry."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SosRateLimitError(SosApiError):
    """Raised when SOS keeps answering 429 after every retry attempt."""


# Re-exported so callers can catch every API failure from this module.
__all__ = [
    "SosApiClient",
    "SosApiError",
    "SosAuthError",
    "SosRateLimitError",
    "extract_page_items",
]


def extract_page_items(payload: Any) -> List[Dict[str, Any]]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("data", "items"):
            block = payload.get(key)
            if isinstance(block, list):
                return block
    return []


def _extract_total(payload: Any) -> int:
    if not isinstance(payload, dict):
        return 0
    for key in ("totalCount", "total"):
        value = payload.get(key)
        if value:
            try:
                return int(value)
            except (TypeError, ValueError):
                return 0
    return 0


def _error_message(resp: requests.Response) -> str:
    try:
        payload = resp.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict) and payload.get("message"):
        return str(payload["message"])
    return resp.reason or (resp.text or "")[:200]


class SosApiClient:
    def __init__(
        self,
        auth: Optional[SosAuth] = None,
        *,
        base_url: str = config.SOS_BASE_URL,
        page_size: int = config.SOS_PAGE_SIZE,
        concurrency: int = config.SOS_CONCURRENT_REQUESTS,
        rate_limit_seconds: float = config.SOS_RATE_LIMIT_MS / 1000.0,
        throttle_wait_seconds: float = config.SOS_THROTTLE_WAIT_SECONDS,
        max_retries: int = config.SOS_MAX_RETRIES,
        timeout_seconds: float = config.SOS_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        self.auth = auth or SosAuth()
        self.base_url = base_url.rstrip("/")
        self.page_size = page_size
        self.concurrency = max(1, concurrency)
        self.rate_limit_seconds = max(0.0, rate_limit_seconds)
        self.throttle_wait_seconds = max(0.0, throttle_wait_seconds)
        self.max_retries = max_retries
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()
        self._sleep = sleep

    # ------------------------------------------------------------
    # Low level GET with rate-limit handling
    # ------------------------------------------------------------
    def _get(self, endpoint: str, params: Dict[str, Any]) -> Any:
        url = f"{self.base_url}{endpoint}"
        for attempt in range(1, self.max_retries + 1):
            headers = self.auth.auth_headers()
            try:
                resp = self.session.get(url, headers=headers, params=params, timeout=self.timeout_seconds)
            except requests.exceptions.RequestException as exc:
                logger.error("[SosApi] Network error GET %s params=%s: %s", endpoint, params, exc)
                raise SosApiError(f"Network error connecting to SOS API: {exc}") from exc

            if resp.status_code == 429:
                wait_time = self.throttle_wait_seconds * (2 ** (attempt - 1))
                if attempt < self.max_retries:
                    logger.warning(
                        "[SosApi] Rate limited (429) on %s start=%s, waiting %.1fs before retry %d/%d",
                        endpoint,
                        params.get("start"),
                        wait_time,
                        attempt,
                        self.max_retries,
                    )
                    self._sleep(wait_time)
                    continue
                logger.error("[SosApi] Rate limited on %s after %d attempts", endpoint, self.max_retries)
                raise SosRateLimitError(
                    f"SOS API rate limit: still throttled after {self.max_retries} attempts",
                    status_code=429,
                )
            if resp.status_code == 401:
                logger.error("[SosApi] Authentication failed for %s", endpoint)
                raise SosAuthError("SOS API authentication failed - check API key")
            if resp.status_code >= 300:
                message = _error_message(resp)
                logger.error("[SosApi] GET %s failed %s: %s", endpoint, resp.status_code, message)
                raise SosApiError(f"SOS API error ({resp.status_code}): {message}", status_code=resp.status_code)

            try:
                return resp.json()
            except ValueError as exc:
                raise SosApiError(f"SOS API returned invalid JSON for {endpoint}") from exc

        # Unreachable: the loop either returns or raises on the last attempt.
        raise SosRateLimitError("SOS API rate limit", status_code=429)

    # ------------------------------------------------------------
    # Inventory items
    # ------------------------------------------------------------
    def fetch_page(self, start: int = 0, max_results: Optional[int] = None) -> Dict[str, Any]:
        max_results = max_results or self.page_size
        logger.info("[SosApi] Fetching items from start=%s max=%s", start, max_results)
        payload = self._get(
            config.SOS_ITEM_ENDPOINT,
            {"start": start, "maxresults": max_results, "archived": "false"},
        )
        items = extract_page_items(payload)
        total_count = _extract_total(payload)

        missing_keys = [item for item in items if isinstance(item, dict) and not item.get("id") and not item.get("sku")]
        if missing_keys:
            logger.warning(
                "[SosApi] Found %d items without ID or SKU in page starting at %s",
                len(missing_keys),
                start,
            )

        return {
            "items": items,
            "total_count": total_count,
            "has_more": (start + max_results) < total_count,
            "current_start": start,
        }

    async def fetch_all_items(self) -> List[Dict[str, Any]]:
        logger.info("[SosApi] Starting to fetch all inventory items")
        first_page = await asyncio.to_thread(self.fetch_page, 0, self.page_size)
        all_items: List[Dict[str, Any]] = list(first_page["items"])
        total_count = first_page["total_count"]

        if len(first_page["items"]) < self.page_size or (total_count and len(all_items) >= total_count):
            logger.info("[SosApi] Fetched %d items in a single page", len(all_items))
            return all_items

        total_pages = math.ceil(total_count / self.page_size) if total_count else None
        logger.info("[SosApi] Total items: %s, pages: %s", total_count or "unknown", total_pages or "unknown")

        next_page = 1
        while total_pages is None or next_page < total_pages:
            last_page = next_page + self.concurrency
            if total_pages is not None:
                last_page = min(last_page, total_pages)
            chunk = list(range(next_page, last_page))
            next_page = last_page

            pages = await run_in_threads(
                self.fetch_page,
                [(page_num * self.page_size, self.page_size) for page_num in chunk],
                max_concurrency=self.concurrency,
                jitter_seconds=self.rate_limit_seconds,
            )
            short_page = False
            for page in pages:
                all_items.extend(page["items"])
                if len(page["items"]) < self.page_size:
                    short_page = True
            logger.info(
                "[SosApi] Fetched pages %s (total: %d/%s)",
                chunk,
                len(all_items),
                total_count or "?",
            )

            if short_page or (total_count and len(all_items) >= total_count):
                break
            if total_pages is not None and next_page >= total_pages:
                break
            await asyncio.sleep(self.rate_limit_seconds * 2)

        logger.info("[SosApi] Successfully fetched all inventory items (%d)", len(all_items))
        return all_items

    def test_connection(self) -> Dict[str, Any]:
        logger.info("[SosApi] Testing SOS API connection")
        try:
            page = self.fetch_page(0, 5)
        except (SosApiError, SosAuthError) as exc:
            logger.error("[SosApi] Connection test failed: %s", exc)
            return {"success": False, "error": str(exc)}

        if not page["items"]:
            return {"success": False, "error": "SOS API test returned no data"}
        return {
            "success": True,
            "item_count": len(page["items"]),
            "total_count": page["total_count"],
            "sample_item": page["items"][0],
        }

    # ------------------------------------------------------------
    # Process (production) transactions
    # ------------------------------------------------------------
    def fetch_transactions(self, start_date: str, end_date: str) -> List[Dict[str, Any]]:
        """
        Sequential pagination over the process endpoint.

        The date window is sent as from/to filters; paging stops on the first
        page shorter than page_size.
        """
        logger.info("[SosApi] Fetching process transactions from %s to %s", start_date, end_date)
        transactions: List[Dict[str, Any]] = []
        start = 0
        while True:
            payload = self._get(
                config.SOS_PROCESS_ENDPOINT,
                {
                    "start": start,
                    "maxresults": self.page_size,
                    "archived": "false",
                    "from": f"{start_date}T00:00:00",
                    "to": f"{end_date}T23:59:59",
                },
            )
            items = extract_page_items(payload)
            if not items and payload and not isinstance(payload, list):
                logger.warning("[SosApi] Process response has no item list: keys=%s", list(payload)[:10])
            transactions.extend(items)
            logger.info("[SosApi] Fetched %d transactions, total: %d", len(items), len(transactions))

            if len(items) < self.page_size:
                break
            start += self.page_size
            self._sleep(self.rate_limit_seconds)

        logger.info("[SosApi] Total process transactions fetched: %d", len(transactions))
        return transactions

    def fetch_production_data(self, start_date: str, end_date: str) -> List[Dict[str, Any]]:
        transactions = self.fetch_transactions(start_date, end_date)
        valid = [
            txn
            for txn in transactions
            if isinstance(txn, dict) and txn.get("outputs") and not txn.get("archived")
        ]
        logger.info(
            "[SosApi] Filtered %d valid production transactions from %d total",
            len(valid),
            len(transactions),
        )
        return valid

    def fetch_recent_processes(self, days_back: int = 15, today: Optional[date] = None) -> List[Dict[str, Any]]:
        end = today or datetime.now(timezone.utc).date()
        start = end - timedelta(days=days_back)
        return self.fetch_transactions(start.isoformat(), end.isoformat())

    def fetch_yesterday_processes(self, today: Optional[date] = None) -> List[Dict[str, Any]]:
        yesterday = (today or datetime.now(timezone.utc).date()) - timedelta(days=1)
        return self.fetch_transactions(yesterday.isoformat(), yesterday.isoformat())
