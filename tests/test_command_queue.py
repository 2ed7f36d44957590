import sqlite3
from datetime import datetime, timedelta

import pytest

from adms_server.models.command import CommandStatus, PlannedCommand, Priority
from adms_server.repositories import command_repo
from adms_server.services.command_queue import (
    NO_RESULT_ERROR,
    backoff_seconds,
    classify,
    command_queue,
    default_priority,
    subject_of,
)
from adms_server.shared.exceptions import CommandNotFoundError, InvalidCommandTransition

T0 = datetime(2024, 1, 10, 9, 0, 0)


def fail(command, now):
    """Deliver ``command`` and report a negative result at ``now``"""
    sent = command_queue.dequeue(command.device_serial, now=now)
    assert sent is not None and sent.id == command.id
    return command_queue.acknowledge(command.id, -1, command.device_serial, now=now)


class TestClassification:
    def test_priorities_by_command_kind(self):
        assert default_priority("DATA DELETE FACE PIN=1") == Priority.CRITICAL
        assert default_priority("DATA UPDATE USERINFO PIN=1\tName=A") == Priority.HIGH
        assert default_priority("DATA UPDATE BIODATA Pin=1\tNo=0") == Priority.HIGH
        assert default_priority("CHECK") == Priority.NORMAL
        assert classify("DATA DELETE FACE PIN=1") == "DELETE"

    def test_subject_of_extracts_pin(self):
        assert subject_of("DATA UPDATE USERINFO PIN=E7\tName=x") == "E7"
        assert subject_of("DATA DELETE FACE PIN=E7") == "E7"
        assert subject_of("REBOOT") is None

    def test_backoff_doubles(self):
        assert [backoff_seconds(n) for n in (1, 2, 3)] == [30, 60, 120]


class TestDequeue:
    def test_order_is_priority_then_sequence_then_age(self):
        command_queue.enqueue("DEV1", "INFO", priority=Priority.NORMAL, now=T0)
        command_queue.enqueue("DEV1", "B", priority=Priority.HIGH, sequence=2, now=T0)
        command_queue.enqueue("DEV1", "A", priority=Priority.HIGH, sequence=1, now=T0 + timedelta(seconds=5))
        command_queue.enqueue("DEV1", "DATA DELETE USERINFO PIN=9", now=T0 + timedelta(seconds=9))

        delivered = []
        while True:
            command = command_queue.dequeue("DEV1", now=T0 + timedelta(minutes=1))
            if command is None:
                break
            delivered.append(command.command)

        assert delivered == ["DATA DELETE USERINFO PIN=9", "A", "B", "INFO"]

    def test_dequeue_marks_sent_and_formats_wire_line(self):
        queued = command_queue.enqueue("DEV1", "INFO", now=T0)

        command = command_queue.dequeue("DEV1", now=T0)

        assert command.status == CommandStatus.SENT
        assert command.sent_at == T0
        assert command.to_wire() == f"C:{queued.id}:INFO"

    def test_queues_are_per_device(self):
        command_queue.enqueue("DEV1", "INFO", now=T0)

        assert command_queue.dequeue("DEV2", now=T0) is None
        assert command_queue.dequeue("DEV1", now=T0) is not None
        assert command_queue.dequeue("DEV1", now=T0) is None


class TestAcknowledge:
    def test_success(self):
        queued = command_queue.enqueue("DEV1", "INFO", now=T0)
        command_queue.dequeue("DEV1", now=T0)

        result = command_queue.acknowledge(queued.id, 0, "DEV1", now=T0 + timedelta(seconds=3))

        assert result.status == CommandStatus.SUCCESS
        assert result.completed_at == T0 + timedelta(seconds=3)

    def test_unknown_id_raises(self):
        with pytest.raises(CommandNotFoundError):
            command_queue.acknowledge(9999, 0, "DEV1")

    def test_result_from_other_device_is_ignored(self):
        queued = command_queue.enqueue("DEV1", "INFO", now=T0)
        command_queue.dequeue("DEV1", now=T0)

        assert command_queue.acknowledge(queued.id, 0, "DEV2", now=T0) is None
        assert command_queue.pending_for_device("DEV1") == []

    def test_duplicate_result_is_ignored(self):
        queued = command_queue.enqueue("DEV1", "INFO", now=T0)
        command_queue.dequeue("DEV1", now=T0)
        command_queue.acknowledge(queued.id, 0, "DEV1", now=T0)

        assert command_queue.acknowledge(queued.id, -1, "DEV1", now=T0) is None
        assert command_queue.stats("DEV1")[CommandStatus.SUCCESS] == 1

    def test_backoff_schedule(self):
        queued = command_queue.enqueue("DEV1", "INFO", max_retries=5, now=T0)

        now = T0
        for expected_delay in (30, 60, 120):
            result = fail(queued, now)
            assert result.status == CommandStatus.PENDING
            assert result.next_retry_at == now + timedelta(seconds=expected_delay)
            assert command_queue.dequeue("DEV1", now=now + timedelta(seconds=expected_delay - 1)) is None
            now = now + timedelta(seconds=expected_delay)

        assert command_queue.stats("DEV1")[CommandStatus.PENDING] == 1

    def test_dead_letter_after_budget_spent(self):
        queued = command_queue.enqueue("DEV1", "INFO", now=T0)

        first = fail(queued, T0)
        second = fail(queued, T0 + timedelta(seconds=30))
        third = fail(queued, T0 + timedelta(seconds=90))

        assert first.retry_count == 1
        assert second.retry_count == 2
        assert third.status == CommandStatus.DEAD_LETTER
        assert third.retry_count == 3
        assert third.last_error == "device returned -1"
        assert command_queue.dequeue("DEV1", now=T0 + timedelta(days=1)) is None
        assert [c.id for c in command_queue.dead_letters()] == [queued.id]

    def test_identity_success_releases_waiting_commands(self):
        identity = command_queue.enqueue("DEV1", "DATA UPDATE USERINFO PIN=E1\tName=A", sequence=1, now=T0)
        template = command_queue.enqueue("DEV1", "DATA UPDATE BIODATA Pin=E1\tNo=0", sequence=3, now=T0)
        other = command_queue.enqueue("DEV1", "DATA UPDATE BIODATA Pin=E10\tNo=0", sequence=3, now=T0)

        command_queue.dequeue("DEV1", now=T0)
        command_queue.dequeue("DEV1", now=T0)
        command_queue.dequeue("DEV1", now=T0)
        command_queue.acknowledge(template.id, -1, "DEV1", now=T0)
        command_queue.acknowledge(other.id, -1, "DEV1", now=T0)
        command_queue.acknowledge(identity.id, 0, "DEV1", now=T0 + timedelta(seconds=1))

        released = command_queue.dequeue("DEV1", now=T0 + timedelta(seconds=2))
        assert released.id == template.id
        assert command_queue.dequeue("DEV1", now=T0 + timedelta(seconds=2)) is None


class TestBackgroundPasses:
    def test_retry_sweep_clears_elapsed_timers(self):
        queued = command_queue.enqueue("DEV1", "INFO", now=T0)
        fail(queued, T0)

        assert command_queue.retry_sweep(now=T0 + timedelta(seconds=10)) == 0
        assert command_queue.retry_sweep(now=T0 + timedelta(seconds=30)) == 1
        assert command_queue.pending_for_device("DEV1")[0].next_retry_at is None

    def test_reconcile_stuck_counts_a_failed_attempt(self):
        queued = command_queue.enqueue("DEV1", "INFO", now=T0)
        command_queue.dequeue("DEV1", now=T0)

        assert command_queue.reconcile_stuck(now=T0 + timedelta(minutes=5)) == 0
        assert command_queue.reconcile_stuck(now=T0 + timedelta(minutes=11)) == 1

        pending = command_queue.pending_for_device("DEV1")
        assert [c.id for c in pending] == [queued.id]
        assert pending[0].retry_count == 1
        assert pending[0].last_error == NO_RESULT_ERROR

    def test_purge_removes_only_old_completed(self):
        old = command_queue.enqueue("DEV1", "OLD", now=T0)
        command_queue.dequeue("DEV1", now=T0)
        command_queue.acknowledge(old.id, 0, "DEV1", now=T0)
        command_queue.enqueue("DEV1", "WAITING", now=T0)

        purged = command_queue.purge(now=T0 + timedelta(days=31))

        assert purged == 1
        assert [c.command for c in command_queue.pending_for_device("DEV1")] == ["WAITING"]

    def test_purge_keeps_recent_completions(self):
        recent = command_queue.enqueue("DEV1", "RECENT", now=T0)
        command_queue.dequeue("DEV1", now=T0)
        command_queue.acknowledge(recent.id, 0, "DEV1", now=T0)

        assert command_queue.purge(now=T0 + timedelta(days=10)) == 0


class TestManagement:
    def test_enqueue_batch_is_atomic(self):
        planned = [
            PlannedCommand("DEV1", "DATA UPDATE USERINFO PIN=1", sequence=1),
            PlannedCommand("DEV1", None, priority=Priority.HIGH, sequence=2),
        ]

        with pytest.raises(sqlite3.IntegrityError):
            command_queue.enqueue_batch(planned, now=T0)

        assert command_queue.stats()["total"] == 0

    def test_enqueue_batch_stores_all(self):
        ids = command_queue.enqueue_batch([
            PlannedCommand("DEV1", "A", sequence=1),
            PlannedCommand("DEV2", "B", sequence=2),
        ], now=T0)

        assert len(ids) == 2
        assert command_queue.stats()["total"] == 2

    def test_cancel_with_filter(self):
        command_queue.enqueue("DEV1", "DATA UPDATE USERINFO PIN=1", now=T0)
        command_queue.enqueue("DEV1", "DATA UPDATE BIODATA Pin=1", now=T0)
        command_queue.enqueue("DEV2", "DATA UPDATE BIODATA Pin=1", now=T0)

        assert command_queue.cancel("DEV1", "BIODATA") == 1
        assert [c.command for c in command_queue.pending_for_device("DEV1")] == ["DATA UPDATE USERINFO PIN=1"]
        assert command_queue.stats("DEV2")[CommandStatus.PENDING] == 1

    def test_retry_dead_letter(self):
        queued = command_queue.enqueue("DEV1", "INFO", max_retries=1, now=T0)
        fail(queued, T0)

        revived = command_queue.retry_dead_letter(queued.id)

        assert revived.status == CommandStatus.PENDING
        assert revived.retry_count == 0
        assert revived.max_retries == 3
        assert command_queue.dequeue("DEV1", now=T0).id == queued.id

    def test_retry_dead_letter_rejects_other_states(self):
        queued = command_queue.enqueue("DEV1", "INFO", now=T0)

        with pytest.raises(InvalidCommandTransition):
            command_queue.retry_dead_letter(queued.id)
        with pytest.raises(CommandNotFoundError):
            command_queue.retry_dead_letter(4242)

    def test_history_matches_whole_employee_code(self):
        command_queue.enqueue("DEV1", "DATA UPDATE USERINFO PIN=E1\tName=A", now=T0)
        command_queue.enqueue("DEV1", "DATA DELETE FACE PIN=E1", now=T0)
        command_queue.enqueue("DEV1", "DATA UPDATE USERINFO PIN=E10\tName=B", now=T0)

        history = command_queue.history_for_employee("E1")

        assert sorted(c.command for c in history) == [
            "DATA DELETE FACE PIN=E1",
            "DATA UPDATE USERINFO PIN=E1\tName=A",
        ]

    def test_underscore_in_employee_code_is_literal(self):
        command_queue.enqueue("DEV2", "DATA UPDATE USERINFO PIN=EX1\tName=A", now=T0)

        assert command_repo.has_recent_identity("DEV2", "E_1", T0 - timedelta(minutes=1)) is False
        assert command_repo.has_recent_identity("DEV2", "EX1", T0 - timedelta(minutes=1)) is True
        assert command_queue.history_for_employee("E_1") == []
        assert command_queue.history_for_employee("E%") == []

    def test_release_leaves_lookalike_codes_waiting(self):
        lookalike = command_queue.enqueue("DEV1", "DATA UPDATE BIODATA Pin=EX1\tNo=0", now=T0)
        command_queue.dequeue("DEV1", now=T0)
        command_queue.acknowledge(lookalike.id, -1, "DEV1", now=T0)

        assert command_repo.release_subject("DEV1", "E_1") == 0
        assert command_queue.dequeue("DEV1", now=T0 + timedelta(seconds=1)) is None

    def test_stats_are_zero_filled(self):
        command_queue.enqueue("DEV1", "INFO", now=T0)

        stats = command_queue.stats()

        assert stats == {
            "pending": 1,
            "sent": 0,
            "success": 0,
            "dead_letter": 0,
            "cancelled": 0,
            "total": 1,
        }
