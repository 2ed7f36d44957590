"""
Command Queue

Durable, per-device outbox for commands delivered on terminal polls.

- Dequeue order within a device: priority, then sequence, then creation time
- One command in flight per poll; the wire protocol has no pipelining
- Negative results retry with exponential backoff until the budget is spent,
  after which the command is parked in dead_letter
"""

import re
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from adms_server.config import settings
from adms_server.models.command import (
    CommandStatus,
    CommandType,
    DeviceCommand,
    PlannedCommand,
    Priority,
)
from adms_server.repositories import command_repo
from adms_server.shared.exceptions import CommandNotFoundError, InvalidCommandTransition
from adms_server.shared.logger import get_logger

PIN_RE = re.compile(r"PIN=([^\t]+)", re.IGNORECASE)

_TYPE_PRIORITY = {
    CommandType.DELETE: Priority.CRITICAL,
    CommandType.USER_INFO: Priority.HIGH,
    CommandType.BIODATA: Priority.HIGH,
    CommandType.FACE: Priority.HIGH,
    CommandType.FINGERPRINT: Priority.HIGH,
    CommandType.QUERY: Priority.LOW,
    CommandType.OTHER: Priority.NORMAL,
}

# Checked in order; DELETE FACE must classify as a deletion
_TYPE_MARKERS = (
    ("DELETE", CommandType.DELETE),
    ("USERINFO", CommandType.USER_INFO),
    ("BIODATA", CommandType.BIODATA),
    ("FACE", CommandType.FACE),
    ("FINGERTMP", CommandType.FINGERPRINT),
    ("QUERY", CommandType.QUERY),
)

NO_RESULT_ERROR = "no result reported"
MANUAL_RETRY_BUDGET = 2


def classify(command: str) -> str:
    upper = command.upper()
    for marker, command_type in _TYPE_MARKERS:
        if marker in upper:
            return command_type
    return CommandType.OTHER


def default_priority(command: str) -> int:
    return _TYPE_PRIORITY[classify(command)]


def subject_of(command: str) -> Optional[str]:
    """Employee code a command targets, if it carries one"""
    match = PIN_RE.search(command)
    return match.group(1).strip() if match else None


def backoff_seconds(attempt: int) -> int:
    """Delay before retry number ``attempt`` (1-based): base, 2x base, 4x base..."""
    return settings.RETRY_BASE_SECONDS * 2 ** (attempt - 1)


class CommandQueueService:
    """Enqueue/dequeue/acknowledge operations over the device_commands table"""

    def __init__(self, logger=None):
        self.logger = logger or get_logger("queue")

    # ========================================================================
    # PRODUCERS
    # ========================================================================

    def _build(self, device_serial: str, command: str, priority: Optional[int],
               sequence: int, max_retries: Optional[int], now: Optional[datetime]) -> DeviceCommand:
        return DeviceCommand(
            device_serial=device_serial,
            command=command,
            priority=priority if priority is not None else default_priority(command),
            sequence=sequence or 0,
            max_retries=max_retries if max_retries is not None else settings.COMMAND_MAX_RETRIES,
            created_at=now or datetime.now(),
        )

    def enqueue(
        self,
        device_serial: str,
        command: str,
        priority: Optional[int] = None,
        sequence: int = 0,
        max_retries: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> DeviceCommand:
        stored = command_repo.insert(
            self._build(device_serial, command, priority, sequence, max_retries, now)
        )
        self.logger.info(
            f"[QUEUE] Enqueued #{stored.id} for {device_serial} "
            f"(priority={stored.priority}, seq={stored.sequence}): {command[:80]}"
        )
        return stored

    def enqueue_batch(self, planned: List[PlannedCommand], now: Optional[datetime] = None) -> List[int]:
        """Enqueue several commands atomically; all are stored or none is"""
        if not planned:
            return []
        commands = [
            self._build(p.device_serial, p.command, p.priority, p.sequence, p.max_retries, now)
            for p in planned
        ]
        ids = command_repo.insert_many(commands)
        self.logger.info(
            f"[QUEUE] Enqueued batch of {len(ids)} commands for "
            f"{len({c.device_serial for c in commands})} device(s)"
        )
        return ids

    def cancel(self, device_serial: str, command_filter: Optional[str] = None) -> int:
        """Cancel pending commands of a device, optionally only those containing ``command_filter``"""
        count = command_repo.cancel_pending(device_serial, command_filter)
        if count:
            self.logger.info(
                f"[QUEUE] Cancelled {count} pending command(s) for {device_serial}"
                + (f" matching '{command_filter}'" if command_filter else "")
            )
        return count

    # ========================================================================
    # DEVICE SIDE
    # ========================================================================

    def dequeue(self, device_serial: str, now: Optional[datetime] = None) -> Optional[DeviceCommand]:
        command = command_repo.claim_next(device_serial, now)
        if command:
            self.logger.info(f"[QUEUE] Sending #{command.id} to {device_serial}: {command.command[:80]}")
        return command

    def acknowledge(
        self,
        command_id: int,
        return_code: int,
        device_serial: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[DeviceCommand]:
        """Apply a terminal's result for a command.

        Returns the updated command, or None when the report was ignored
        (wrong device, or the command is no longer awaiting a result).
        Raises CommandNotFoundError for an unknown id.
        """
        command = command_repo.get_by_id(command_id)
        if command is None:
            raise CommandNotFoundError(command_id)

        if device_serial and command.device_serial != device_serial:
            self.logger.warning(
                f"[QUEUE] Ignoring result for #{command_id} from {device_serial}; "
                f"command belongs to {command.device_serial}"
            )
            return None

        if command.status != CommandStatus.SENT:
            self.logger.info(
                f"[QUEUE] Ignoring duplicate result for #{command_id} (status={command.status})"
            )
            return None

        if return_code >= 0:
            if not command_repo.mark_success(command_id, now):
                return None
            self.logger.info(f"[QUEUE] #{command_id} succeeded on {command.device_serial}")
            self._release_after_identity(command)
        else:
            self._record_failure(command, f"device returned {return_code}", now)

        return command_repo.get_by_id(command_id)

    def _release_after_identity(self, command: DeviceCommand) -> None:
        if classify(command.command) != CommandType.USER_INFO:
            return
        employee_code = subject_of(command.command)
        if not employee_code:
            return
        released = command_repo.release_subject(command.device_serial, employee_code)
        if released:
            self.logger.info(
                f"[QUEUE] Released {released} waiting command(s) for PIN={employee_code} "
                f"on {command.device_serial}"
            )

    def _record_failure(self, command: DeviceCommand, error: str, now: Optional[datetime]) -> bool:
        now = now or datetime.now()
        attempt = command.retry_count + 1

        if attempt >= command.max_retries:
            moved = command_repo.mark_dead_letter(command.id, attempt, error, now)
            if moved:
                self.logger.error(
                    f"[QUEUE] #{command.id} dead-lettered after {attempt} attempt(s) "
                    f"on {command.device_serial}: {error}"
                )
            return moved

        delay = backoff_seconds(attempt)
        moved = command_repo.schedule_retry(command.id, attempt, now + timedelta(seconds=delay), error)
        if moved:
            self.logger.warning(
                f"[QUEUE] #{command.id} failed ({error}); retry {attempt}/{command.max_retries} in {delay}s"
            )
        return moved

    # ========================================================================
    # BACKGROUND PASSES
    # ========================================================================

    def retry_sweep(self, now: Optional[datetime] = None) -> int:
        """Clear elapsed backoff markers"""
        count = command_repo.clear_elapsed_retries(now)
        if count:
            self.logger.info(f"[QUEUE] {count} command(s) ready for retry")
        return count

    def reconcile_stuck(self, now: Optional[datetime] = None) -> int:
        """Count commands left in 'sent' past the timeout as failed attempts"""
        now = now or datetime.now()
        cutoff = now - timedelta(minutes=settings.SENT_TIMEOUT_MINUTES)
        count = 0
        for command in command_repo.get_stuck_sent(cutoff):
            if self._record_failure(command, NO_RESULT_ERROR, now):
                count += 1
        if count:
            self.logger.warning(f"[QUEUE] Reconciled {count} command(s) with no reported result")
        return count

    def purge(self, now: Optional[datetime] = None, retention_days: Optional[int] = None) -> int:
        now = now or datetime.now()
        days = retention_days if retention_days is not None else settings.COMMAND_RETENTION_DAYS
        count = command_repo.purge_completed(now - timedelta(days=days))
        if count:
            self.logger.info(f"[QUEUE] Purged {count} completed command(s) older than {days} days")
        return count

    # ========================================================================
    # INSPECTION & MANUAL INTERVENTION
    # ========================================================================

    def stats(self, device_serial: Optional[str] = None) -> Dict[str, int]:
        counts = command_repo.count_by_status(device_serial)
        result = {
            status: counts.get(status, 0)
            for status in (
                CommandStatus.PENDING,
                CommandStatus.SENT,
                CommandStatus.SUCCESS,
                CommandStatus.DEAD_LETTER,
                CommandStatus.CANCELLED,
            )
        }
        result["total"] = sum(counts.values())
        return result

    def dead_letters(self, device_serial: Optional[str] = None, limit: int = 50) -> List[DeviceCommand]:
        return command_repo.get_dead_letters(device_serial, limit)

    def retry_dead_letter(self, command_id: int) -> DeviceCommand:
        """Return a dead-lettered command to the queue with a fresh retry budget"""
        command = command_repo.get_by_id(command_id)
        if command is None:
            raise CommandNotFoundError(command_id)
        if command.status != CommandStatus.DEAD_LETTER:
            raise InvalidCommandTransition(command_id, command.status, CommandStatus.PENDING)

        if not command_repo.revive_dead_letter(command_id, MANUAL_RETRY_BUDGET):
            latest = command_repo.get_by_id(command_id)
            raise InvalidCommandTransition(command_id, latest.status, CommandStatus.PENDING)

        self.logger.info(f"[QUEUE] Dead-lettered #{command_id} requeued manually")
        return command_repo.get_by_id(command_id)

    def history_for_employee(self, employee_code: str, limit: int = 20) -> List[DeviceCommand]:
        return command_repo.get_for_employee(employee_code, limit)

    def pending_for_device(self, device_serial: str) -> List[DeviceCommand]:
        return command_repo.get_for_device(device_serial, CommandStatus.PENDING)


command_queue = CommandQueueService()
