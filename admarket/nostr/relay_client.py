import asyncio
import json
import logging
import os
import time
import uuid
from typing import Any, Dict, Iterable, List, Optional, Tuple

import websockets

from admarket.nostr.event import METADATA_KIND, NostrEventError, parse_metadata_content, verify_event

logger = logging.getLogger(__name__)

BASE_COOLDOWN_SECONDS = 5
MAX_COOLDOWN_SECONDS = 120


class RelayBackoff:
    """Per-relay cooldown doubling from 5s up to a 120s ceiling."""

    def __init__(self) -> None:
        # relay -> (consecutive failures, cooldown deadline)
        self._state: Dict[str, Tuple[int, float]] = {}

    def is_on_cooldown(self, relay: str) -> bool:
        _, until = self._state.get(relay, (0, 0.0))
        return until > time.time()

    def record_failure(self, relay: str) -> float:
        failures = self._state.get(relay, (0, 0.0))[0] + 1
        delay = min(MAX_COOLDOWN_SECONDS, BASE_COOLDOWN_SECONDS << (failures - 1))
        self._state[relay] = (failures, time.time() + delay)
        logger.warning("Relay %s failed %d time(s); cooling down %ss", relay, failures, delay)
        return delay

    def record_success(self, relay: str) -> None:
        self._state.pop(relay, None)


class TTLCache:
    def __init__(self, ttl_seconds: int = 30, max_entries: int = 512) -> None:
        self.ttl = ttl_seconds
        self.max_entries = max_entries
        # Oldest first: set() re-appends, so the front expires first.
        self._entries: Dict[str, Tuple[float, Any]] = {}

    def get(self, key: str) -> Any:
        expires_at, value = self._entries.get(key, (0.0, None))
        if expires_at >= time.time():
            return value
        self._entries.pop(key, None)
        return None

    def set(self, key: str, value: Any) -> None:
        now = time.time()
        self._entries.pop(key, None)
        self._entries[key] = (now + self.ttl, value)
        while self._entries:
            oldest = next(iter(self._entries))
            if self._entries[oldest][0] >= now and len(self._entries) <= self.max_entries:
                break
            del self._entries[oldest]

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        self._entries.clear()


class RelayClient:
    """Read-only relay access: REQ until EOSE, a few relays at a time, results cached briefly."""

    def __init__(self, max_concurrent: int = 5, max_relays_for_reads: int = 5, timeout_seconds: int = 5) -> None:
        self._sem = asyncio.Semaphore(max_concurrent)
        self.max_reads = max_relays_for_reads
        self.timeout = timeout_seconds
        self.backoff = RelayBackoff()
        self.cache = TTLCache(ttl_seconds=60)

    @staticmethod
    def _offline() -> bool:
        return bool(os.getenv("PYTEST_CURRENT_TEST"))

    async def fetch_events(
        self, filters: List[Dict[str, Any]], relays: Iterable[str], timeout_seconds: int | None = None
    ) -> List[Dict[str, Any]]:
        if self._offline():
            return []
        targets = list(dict.fromkeys(relays))
        key = json.dumps([filters, sorted(targets)], sort_keys=True)
        hit = self.cache.get(key)
        if hit is not None:
            return hit

        wait = timeout_seconds or self.timeout
        batches = await asyncio.gather(
            *(self._query(relay, filters, wait) for relay in targets[: self.max_reads] if not self.backoff.is_on_cooldown(relay))
        )
        events = [event for batch in batches for event in batch]
        self.cache.set(key, events)
        return events

    async def _query(self, relay: str, filters: List[Dict[str, Any]], wait: float) -> List[Dict[str, Any]]:
        received: List[Dict[str, Any]] = []
        subscription = f"admarket-{uuid.uuid4().hex[:8]}"
        async with self._sem:
            started = time.monotonic()
            try:
                async with websockets.connect(relay, open_timeout=wait, close_timeout=wait) as ws:
                    await ws.send(json.dumps(["REQ", subscription, *filters]))
                    while True:
                        frame = json.loads(await asyncio.wait_for(ws.recv(), timeout=wait))
                        if not frame or frame[0] == "EOSE":
                            break
                        if frame[0] == "EVENT" and len(frame) >= 3:
                            received.append(frame[2])
                    await ws.send(json.dumps(["CLOSE", subscription]))
            except Exception as exc:  # noqa: BLE001
                self.backoff.record_failure(relay)
                logger.warning("Relay query to %s failed: %s", relay, exc)
                return received
        self.backoff.record_success(relay)
        logger.info("%s returned %d event(s) in %.0fms", relay, len(received), (time.monotonic() - started) * 1000)
        return received

    async def fetch_profile(self, pubkey_hex: str, relays: Iterable[str]) -> Optional[Dict[str, Any]]:
        """Newest kind-0 metadata for ``pubkey_hex`` across relays, or None."""
        events = await self.fetch_events([{"kinds": [METADATA_KIND], "authors": [pubkey_hex], "limit": 1}], relays)
        return newest_profile(events, pubkey_hex)


def newest_profile(events: Iterable[Dict[str, Any]], pubkey_hex: str) -> Optional[Dict[str, Any]]:
    """Content of the newest correctly signed kind-0 event by ``pubkey_hex``."""
    candidates = [
        e for e in events if isinstance(e, dict) and e.get("pubkey") == pubkey_hex and e.get("kind") == METADATA_KIND
    ]
    candidates.sort(key=lambda e: e["created_at"] if isinstance(e.get("created_at"), int) else 0, reverse=True)
    for event in candidates:
        if not verify_event(event):
            logger.warning("Dropping metadata event %s with a bad signature", event.get("id"))
            continue
        try:
            return parse_metadata_content(event)
        except NostrEventError as exc:
            logger.info("Skipping malformed metadata event %s: %s", event.get("id"), exc)
    return None


relay_client = RelayClient()
