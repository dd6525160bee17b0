"""
Filesystem bridge to a legacy spooler process.

The downstream process only understands "a file appeared in a well-known
slot". Each slot is an empty placeholder file in a watched directory; an
upstream producer writes a job into it, and this adapter renames the file to
a timestamped output name the legacy process picks up.

Per-slot lifecycle:
    idle -> detected -> debounce -> [lock_retry]* -> completed | abandoned -> idle

Resilience features:
- Zero-byte files are placeholders, not jobs
- Debounce before touching a freshly written file
- Bounded retry while another process still holds the file
- At most one in-flight rename per slot
"""

import asyncio
import logging
import os
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, Callable, Optional

from print_dispatch.errors import BackendRejected, StagingFailed, TransientLock

from .base import BackendBase
from .fs_errors import is_lock_contention

logger = logging.getLogger(__name__)

# Placeholder filename -> output prefix
DEFAULT_SLOTS = {
    "output_tray__1.pdf": "TRAY_1_STD",
    "output_tray__2.pdf": "TRAY_2_ENV",
    "output_tray__3.pdf": "TRAY_3_LEG",
}


class SlotPhase(Enum):
    IDLE = "idle"
    DETECTED = "detected"
    DEBOUNCE = "debounce"
    LOCK_RETRY = "lock_retry"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


@dataclass
class SlotState:
    """Processing state for a slot with a job in flight."""

    slot_id: str
    phase: SlotPhase = SlotPhase.DETECTED
    in_flight: bool = True
    lock_retry_count: int = 0
    detected_at: datetime = field(default_factory=datetime.now)


@dataclass
class SlotOutcome:
    slot_id: str
    phase: SlotPhase
    output_path: Optional[str] = None
    lock_retries: int = 0
    error: Optional[str] = None
    finished_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "slot": self.slot_id,
            "phase": self.phase.value,
            "output": self.output_path,
            "lock_retries": self.lock_retries,
            "error": self.error,
            "finished_at": self.finished_at.isoformat(),
        }


@dataclass
class SlotEvent:
    """A slot file changed on disk."""

    slot_id: str
    size: int


@dataclass
class BridgeConfig:
    """Filesystem bridge configuration."""

    directory: str = "storage"
    slots: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_SLOTS))
    debounce_ms: int = 500
    retry_delay_ms: int = 1000
    max_lock_retries: int = 10
    poll_interval_ms: int = 250

    @classmethod
    def from_dict(cls, config: dict) -> "BridgeConfig":
        """Create from config dictionary."""
        slots = config.get("slots") or DEFAULT_SLOTS
        return cls(
            directory=config.get("directory", "storage"),
            slots={str(name): str(prefix) for name, prefix in slots.items()},
            debounce_ms=config.get("debounce_ms", 500),
            retry_delay_ms=config.get("retry_delay_ms", 1000),
            max_lock_retries=max(0, int(config.get("max_lock_retries", 10))),
            poll_interval_ms=config.get("poll_interval_ms", 250),
        )

    @property
    def debounce_sec(self) -> float:
        return self.debounce_ms / 1000.0

    @property
    def retry_delay_sec(self) -> float:
        return self.retry_delay_ms / 1000.0

    @property
    def poll_interval_sec(self) -> float:
        return self.poll_interval_ms / 1000.0


class FilesystemBridgeAdapter(BackendBase):
    """
    Adapter for the legacy filesystem-bridge printer.

    Config options:
        directory: Watched directory holding the slot placeholders
        slots: Placeholder filename -> output prefix
        debounce_ms: Quiet time before acting on a detected job (default: 500)
        retry_delay_ms: Back-off between rename attempts on a locked file (default: 1000)
        max_lock_retries: Rename retries before the slot is abandoned (default: 10)
        poll_interval_ms: How often slot files are checked for changes (default: 250)
    """

    kind = "bridge"

    def __init__(self, config: dict, renamer: Optional[Callable[[str, str], None]] = None):
        super().__init__(config)
        self.settings = BridgeConfig.from_dict(config)
        self.directory = Path(self.settings.directory)
        self._rename = renamer or os.rename

        self._states: dict[str, SlotState] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._signatures: dict[str, Optional[tuple[int, int]]] = {}
        self._history: deque[SlotOutcome] = deque(maxlen=50)
        self._created: set[str] = set()

        self._stop_event: Optional[asyncio.Event] = None
        self._watch_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Slot state transitions
    # ------------------------------------------------------------------

    def begin_processing(self, slot_id: str) -> Optional[SlotState]:
        """
        Mark a slot as in flight.

        Returns None if the slot is already being processed. Must be called
        before any await so two events for one slot cannot both get through.
        """
        if slot_id in self._states:
            return None
        state = SlotState(slot_id=slot_id)
        self._states[slot_id] = state
        return state

    def finish_processing(
        self,
        state: SlotState,
        phase: SlotPhase,
        output_path: Optional[Path] = None,
        error: Optional[str] = None,
    ) -> SlotOutcome:
        """Leave the in-flight set with a terminal phase and record the outcome."""
        state.phase = phase
        state.in_flight = False
        self._states.pop(state.slot_id, None)
        self._tasks.pop(state.slot_id, None)
        # An abandoned job stays put until the file changes again
        self._signatures[state.slot_id] = self._signature(state.slot_id)

        outcome = SlotOutcome(
            slot_id=state.slot_id,
            phase=phase,
            output_path=str(output_path) if output_path else None,
            lock_retries=state.lock_retry_count,
            error=error,
        )
        self._history.append(outcome)
        return outcome

    def is_in_flight(self, slot_id: str) -> bool:
        return slot_id in self._states

    def get_state(self, slot_id: str) -> Optional[SlotState]:
        return self._states.get(slot_id)

    def get_history(self, limit: int = 10) -> list[SlotOutcome]:
        """Most recent slot outcomes, oldest first."""
        return list(self._history)[-limit:]

    # ------------------------------------------------------------------
    # Placeholders
    # ------------------------------------------------------------------

    def slot_path(self, slot_id: str) -> Path:
        return self.directory / slot_id

    def ensure_placeholders(self) -> None:
        """Create the watched directory and any missing placeholder files."""
        self.directory.mkdir(parents=True, exist_ok=True)
        for slot_id in self.settings.slots:
            path = self.slot_path(slot_id)
            if not path.exists():
                path.write_bytes(b"")
                self._created.add(slot_id)
                logger.info(f"[BRIDGE] Created placeholder {path}")

    def remove_placeholders(self) -> None:
        """
        Remove the placeholders this process created. Missing files are fine;
        a slot still holding a job is left on disk.
        """
        for slot_id in sorted(self._created):
            path = self.slot_path(slot_id)
            try:
                if path.stat().st_size > 0:
                    logger.warning(f"[BRIDGE] Leaving {path.name} in place, it holds an unprocessed job")
                    continue
                path.unlink()
                logger.info(f"[BRIDGE] Deleted placeholder {path.name}")
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"[BRIDGE] Could not delete placeholder {path}: {e}")
        self._created.clear()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Set up placeholders and start watching."""
        if self._watch_task is not None:
            logger.warning("[BRIDGE] Watcher already running")
            return

        self.ensure_placeholders()
        self._stop_event = asyncio.Event()
        self._watch_task = asyncio.create_task(self._watch_loop())
        logger.info(
            f"[BRIDGE] Watching {self.directory} for {len(self.settings.slots)} slot(s)"
        )

    async def stop(self) -> None:
        """Stop watching, cancel in-flight slots and remove our placeholders."""
        if self._stop_event is not None:
            self._stop_event.set()

        if self._watch_task is not None:
            self._watch_task.cancel()
            try:
                await self._watch_task
            except asyncio.CancelledError:
                pass
            self._watch_task = None

        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._states.clear()

        self.remove_placeholders()
        logger.info("[BRIDGE] Watcher stopped")

    @property
    def is_running(self) -> bool:
        return self._watch_task is not None and not self._watch_task.done()

    # ------------------------------------------------------------------
    # Watching
    # ------------------------------------------------------------------

    def _signature(self, slot_id: str) -> Optional[tuple[int, int]]:
        try:
            stat = self.slot_path(slot_id).stat()
        except FileNotFoundError:
            return None
        return stat.st_size, stat.st_mtime_ns

    async def watch(self) -> AsyncIterator[SlotEvent]:
        """
        Yield an event whenever a slot file changes.

        Runs until the adapter is stopped. Each call starts from the current
        stop event, so a stopped adapter's generator cannot be resumed.
        """
        stop_event = self._stop_event or asyncio.Event()

        while not stop_event.is_set():
            for slot_id in self.settings.slots:
                signature = self._signature(slot_id)
                if signature == self._signatures.get(slot_id):
                    continue
                self._signatures[slot_id] = signature
                if signature is not None:
                    yield SlotEvent(slot_id=slot_id, size=signature[0])

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.settings.poll_interval_sec)
            except asyncio.TimeoutError:
                pass

    async def _watch_loop(self) -> None:
        """Main watcher loop. A failing event never stops the loop."""
        async for event in self.watch():
            try:
                self.handle_event(event)
            except Exception as e:
                logger.error(f"[BRIDGE] Failed to handle event for {event.slot_id}: {e}")

    def handle_event(self, event: SlotEvent) -> bool:
        """
        React to a slot change. Returns True if processing started.

        Ignored: unknown slots, slots already in flight, missing or empty files.
        """
        slot_id = event.slot_id
        if slot_id not in self.settings.slots or self.is_in_flight(slot_id):
            return False

        try:
            size = self.slot_path(slot_id).stat().st_size
        except FileNotFoundError:
            return False
        if size == 0:
            return False

        state = self.begin_processing(slot_id)
        if state is None:
            return False

        logger.info(f"[BRIDGE] Job detected: {slot_id} ({size} bytes)")
        self._tasks[slot_id] = asyncio.create_task(self._process(state))
        return True

    # ------------------------------------------------------------------
    # Rename
    # ------------------------------------------------------------------

    def _output_path(self, slot_id: str) -> Path:
        prefix = self.settings.slots[slot_id]
        suffix = Path(slot_id).suffix or ".pdf"
        stamp = datetime.now().strftime("%H-%M-%S")

        candidate = self.directory / f"{prefix}_{stamp}{suffix}"
        counter = 1
        while candidate.exists():
            candidate = self.directory / f"{prefix}_{stamp}_{counter}{suffix}"
            counter += 1
        return candidate

    def _attempt_rename(self, state: SlotState) -> Path:
        """Rename the slot file to its output name, raising TransientLock on contention."""
        source = self.slot_path(state.slot_id)
        destination = self._output_path(state.slot_id)
        try:
            self._rename(str(source), str(destination))
        except OSError as e:
            if is_lock_contention(e):
                raise TransientLock(f"{state.slot_id} is locked", {"errno": e.errno}) from e
            raise
        return destination

    async def _process(self, state: SlotState) -> None:
        slot_id = state.slot_id
        source = self.slot_path(slot_id)

        try:
            state.phase = SlotPhase.DEBOUNCE
            await asyncio.sleep(self.settings.debounce_sec)

            while True:
                try:
                    destination = self._attempt_rename(state)
                    break
                except TransientLock:
                    if state.lock_retry_count >= self.settings.max_lock_retries:
                        logger.error(
                            f"[BRIDGE] Abandoned {slot_id}: still locked after "
                            f"{state.lock_retry_count} retries"
                        )
                        self.finish_processing(
                            state, SlotPhase.ABANDONED,
                            error=f"locked after {state.lock_retry_count} retries"
                        )
                        return
                    state.lock_retry_count += 1
                    state.phase = SlotPhase.LOCK_RETRY
                    logger.info(
                        f"[BRIDGE] {slot_id} locked, retry {state.lock_retry_count}/"
                        f"{self.settings.max_lock_retries} in {self.settings.retry_delay_ms}ms"
                    )
                    await asyncio.sleep(self.settings.retry_delay_sec)

            # Next job can arrive as soon as the placeholder is back
            try:
                source.write_bytes(b"")
                self._created.add(slot_id)
            except OSError as e:
                logger.error(f"[BRIDGE] Could not recreate placeholder {source}: {e}")

            logger.info(f"[BRIDGE] Created {destination.name} from {slot_id}")
            self.finish_processing(state, SlotPhase.COMPLETED, output_path=destination)

        except asyncio.CancelledError:
            self.finish_processing(state, SlotPhase.ABANDONED, error="cancelled")
            raise
        except Exception as e:
            logger.error(f"[BRIDGE] Error processing {slot_id}: {e}")
            self.finish_processing(state, SlotPhase.ABANDONED, error=str(e))

    # ------------------------------------------------------------------
    # Dispatch path
    # ------------------------------------------------------------------

    async def submit(self, payload: bytes, destination: str) -> Optional[str]:
        """
        Drop a payload into a slot.

        The watcher completes the job asynchronously, so there is no backend
        job id to return.
        """
        if destination not in self.settings.slots:
            raise BackendRejected("unknown-slot", f"Unknown bridge slot: {destination}")
        if self.is_in_flight(destination):
            raise BackendRejected("slot-busy", f"Bridge slot {destination} is busy")

        slot = self.slot_path(destination)
        # A non-empty slot still holds a job (abandoned, or not yet polled)
        try:
            occupied = slot.stat().st_size > 0
        except FileNotFoundError:
            occupied = False
        if occupied:
            raise BackendRejected("slot-busy", f"Bridge slot {destination} still holds a job")

        staging = self.directory / f".{destination}.{uuid.uuid4().hex[:8]}.tmp"

        try:
            await asyncio.to_thread(self._stage, staging, slot, payload)
        except OSError as e:
            logger.error(f"[BRIDGE] Could not stage {len(payload)} bytes into {slot}: {e}")
            try:
                staging.unlink()
            except OSError:
                pass
            raise StagingFailed(f"Could not write slot {destination}: {e}", {"slot": destination}) from e

        logger.info(f"[BRIDGE] Staged {len(payload)} bytes into {destination}")
        return None

    @staticmethod
    def _stage(staging: Path, slot: Path, payload: bytes) -> None:
        staging.write_bytes(payload)
        os.replace(staging, slot)

    def describe(self) -> dict:
        slots = {}
        for slot_id, prefix in self.settings.slots.items():
            state = self._states.get(slot_id)
            slots[slot_id] = {
                "prefix": prefix,
                "phase": state.phase.value if state else SlotPhase.IDLE.value,
                "lock_retry_count": state.lock_retry_count if state else 0,
            }
        return {
            "directory": str(self.directory),
            "watching": self.is_running,
            "slots": slots,
            "recent": [outcome.to_dict() for outcome in self.get_history()],
        }
