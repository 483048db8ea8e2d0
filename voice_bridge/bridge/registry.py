"""Registry of calls currently bridged by this process."""

import time
from dataclasses import dataclass, field
from typing import Callable, Iterator, Optional

import structlog


logger = structlog.get_logger(__name__)


@dataclass
class ActiveCall:
    """One live call."""

    call_id: str
    caller: Optional[str] = None
    stream_sid: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    touched_at: float = 0.0


class ActiveCallRegistry:
    """Call registry with bounded entry lifetime.

    Sessions remove their entry on teardown. Entries whose owner stopped
    touching them (a crashed or leaked session) expire after ``ttl_seconds``
    and are pruned on access.
    """

    def __init__(self, ttl_seconds: float = 60.0, clock: Callable[[], float] = time.monotonic) -> None:
        """Initialize registry.

        Args:
            ttl_seconds: Lifetime of an entry after its last touch
            clock: Monotonic clock in seconds

        Raises:
            ValueError: If ttl_seconds is not positive
        """
        if ttl_seconds <= 0:
            raise ValueError(f"TTL must be positive, got {ttl_seconds}")

        self._ttl = ttl_seconds
        self._clock = clock
        self._calls: dict[str, ActiveCall] = {}

    @property
    def ttl_seconds(self) -> float:
        """Entry lifetime after last touch."""
        return self._ttl

    def register(self, call_id: str, caller: Optional[str] = None) -> ActiveCall:
        """Add or replace the entry for a call.

        Args:
            call_id: Call identifier
            caller: Caller identity supplied by call routing

        Returns:
            The registered entry
        """
        self.prune()
        if call_id in self._calls:
            logger.warning("Replacing active call entry", call_id=call_id)
        entry = ActiveCall(call_id=call_id, caller=caller, touched_at=self._clock())
        self._calls[call_id] = entry
        logger.debug("Call registered", call_id=call_id, active=len(self._calls))
        return entry

    def touch(self, call_id: str) -> bool:
        """Extend an entry's lifetime.

        Returns:
            True if the entry exists
        """
        entry = self.get(call_id)
        if entry is None:
            return False
        entry.touched_at = self._clock()
        return True

    def update_stream(self, call_id: str, stream_sid: str) -> bool:
        """Record the transport stream identifier for a call.

        Returns:
            True if the entry exists
        """
        entry = self.get(call_id)
        if entry is None:
            return False
        entry.stream_sid = stream_sid
        entry.touched_at = self._clock()
        return True

    def get(self, call_id: str) -> Optional[ActiveCall]:
        """Look up a live entry, pruning it if expired."""
        entry = self._calls.get(call_id)
        if entry is None:
            return None
        if self._is_expired(entry):
            del self._calls[call_id]
            logger.info("Active call entry expired", call_id=call_id)
            return None
        return entry

    def remove(self, call_id: str, entry: Optional[ActiveCall] = None) -> Optional[ActiveCall]:
        """Remove a call's entry.

        Args:
            call_id: Call identifier
            entry: Only remove if this is still the registered entry
                (a later registration under the same id is left alone)

        Returns:
            The removed entry, if any
        """
        current = self._calls.get(call_id)
        if current is None or (entry is not None and current is not entry):
            return None
        return self._calls.pop(call_id)

    def prune(self) -> int:
        """Drop every expired entry.

        Returns:
            Number of entries dropped
        """
        expired = [call_id for call_id, entry in self._calls.items() if self._is_expired(entry)]
        for call_id in expired:
            del self._calls[call_id]
        if expired:
            logger.info("Pruned expired call entries", count=len(expired))
        return len(expired)

    def __len__(self) -> int:
        self.prune()
        return len(self._calls)

    def __contains__(self, call_id: str) -> bool:
        return self.get(call_id) is not None

    def __iter__(self) -> Iterator[ActiveCall]:
        self.prune()
        return iter(list(self._calls.values()))

    def _is_expired(self, entry: ActiveCall) -> bool:
        return self._clock() - entry.touched_at > self._ttl
