"""
Outbound change queue and background push trigger.

Local writes made by the importers are queued in the ``outbound_changes``
table so an external sync transport can push them elsewhere. When auto
sync is enabled, each queued change starts a bounded background push.
"""

from __future__ import annotations

import itertools
import json
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from pagen_sync.storage.db import (
    SyncDatabase,
    from_db_timestamp,
    to_db_timestamp,
    utcnow,
)

logger = logging.getLogger(__name__)

# Default upper bound for one background push, in seconds
DEFAULT_PUSH_TIMEOUT = 30.0

_task_counter = itertools.count(1)


@dataclass
class OutboundChange:
    """A queued local change awaiting push."""

    id: int
    entity: str
    entity_id: str
    op: str
    payload: dict[str, Any]
    queued_at: datetime | None = None
    pushed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "entity": self.entity,
            "entity_id": self.entity_id,
            "op": self.op,
            "payload": self.payload,
            "queued_at": to_db_timestamp(self.queued_at),
        }


# Pushes pending changes; receives the queue and a time budget in seconds,
# returns the number of changes pushed
PushCallable = Callable[["OutboundQueue", float], int]


class BackgroundTask:
    """
    Handle for one background push.

    The task runs in a named daemon thread. Python threads cannot be
    killed, so the timeout is passed to the push callable as its budget
    and ``timed_out`` reports whether the task overran it.
    """

    def __init__(self, name: str, target: Callable[[float], int], timeout: float):
        self.name = name
        self.timeout = timeout
        self.started_at: float | None = None
        self.finished_at: float | None = None
        self.result: int | None = None
        self.error: BaseException | None = None
        self._target = target
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def start(self) -> BackgroundTask:
        self.started_at = time.monotonic()
        self._thread.start()
        return self

    def _run(self) -> None:
        try:
            self.result = self._target(self.timeout)
            logger.debug(f"{self.name} pushed {self.result} change(s)")
        except Exception as e:
            self.error = e
            logger.warning(f"{self.name} failed: {e}")
        finally:
            self.finished_at = time.monotonic()

    def wait(self, timeout: float | None = None) -> bool:
        """
        Wait for the task to finish.

        Args:
            timeout: Seconds to wait; defaults to the task's own timeout

        Returns:
            True if the task finished
        """
        self._thread.join(self.timeout if timeout is None else timeout)
        return self.done

    @property
    def done(self) -> bool:
        return self.finished_at is not None

    @property
    def running(self) -> bool:
        return self._thread.is_alive()

    @property
    def succeeded(self) -> bool:
        return self.done and self.error is None

    @property
    def timed_out(self) -> bool:
        if self.started_at is None:
            return False
        end = self.finished_at if self.finished_at is not None else time.monotonic()
        return end - self.started_at > self.timeout

    def __repr__(self) -> str:
        state = "done" if self.done else "running" if self.running else "pending"
        return f"BackgroundTask(name={self.name!r}, state={state})"


class BackgroundSyncTrigger:
    """
    Fire-and-forget push trigger with at most one task in flight.

    Usage:
        trigger = BackgroundSyncTrigger(queue, push=transport.push, timeout=30)
        task = trigger.trigger()
        task.wait()
    """

    def __init__(
        self,
        queue: OutboundQueue,
        push: PushCallable,
        timeout: float = DEFAULT_PUSH_TIMEOUT,
    ):
        self.queue = queue
        self.push = push
        self.timeout = timeout
        self.current: BackgroundTask | None = None
        self._lock = threading.Lock()

    def trigger(self) -> BackgroundTask:
        """
        Start a background push unless one is already running.

        Returns:
            The new task, or the task already in flight
        """
        with self._lock:
            if self.current is not None and self.current.running:
                if self.current.timed_out:
                    logger.warning(
                        f"{self.current.name} exceeded its {self.timeout}s budget"
                    )
                return self.current

            name = f"pagen-sync-push-{next(_task_counter)}"
            self.current = BackgroundTask(
                name, lambda budget: self.push(self.queue, budget), self.timeout
            ).start()
            logger.debug(f"Started {name}")
            return self.current

    def drain(self) -> BackgroundTask | None:
        """
        Wait for the task in flight, then push anything queued meanwhile.

        Changes queued while a task was already running are picked up by
        one more task. Each wait is bounded by the trigger timeout.

        Returns:
            The last task waited on, or None if nothing ran
        """
        task = self.current
        if task is not None and not task.wait():
            logger.warning(f"{task.name} still running after {self.timeout}s")
            return task

        if self.queue.pending_count():
            task = self.trigger()
            if not task.wait():
                logger.warning(f"{task.name} still running after {self.timeout}s")
        return task


class OutboxFilePush:
    """
    Push transport that appends pending changes to a JSON Lines file.

    Each line is one change (see ``OutboundChange.to_dict``); changes are
    marked pushed once their batch is written. Stops early when the time
    budget runs out, leaving the rest pending for the next push.

    Usage:
        push = OutboxFilePush(config_dir / "outbox.jsonl")
        trigger = BackgroundSyncTrigger(queue, push=push, timeout=30)
    """

    def __init__(self, path: Path, batch_size: int = 100):
        self.path = path
        self.batch_size = batch_size

    def __call__(self, queue: OutboundQueue, budget: float) -> int:
        deadline = time.monotonic() + budget
        self.path.parent.mkdir(parents=True, exist_ok=True)

        pushed = 0
        while time.monotonic() < deadline:
            changes = queue.pending(limit=self.batch_size)
            if not changes:
                break
            with self.path.open("a", encoding="utf-8") as f:
                for change in changes:
                    f.write(json.dumps(change.to_dict()) + "\n")
            pushed += queue.mark_pushed([change.id for change in changes])
        return pushed


class OutboundQueue:
    """
    Durable queue of local changes.

    Usage:
        queue = OutboundQueue(database)
        store = EntityStore(database, outbound=queue)
        ...
        for change in queue.pending():
            ...
        queue.mark_pushed([c.id for c in changes])
    """

    def __init__(
        self, database: SyncDatabase, trigger: BackgroundSyncTrigger | None = None
    ):
        self.database = database
        self.trigger = trigger

    def queue_change(
        self, entity: str, entity_id: str, op: str, payload: dict[str, Any]
    ) -> int:
        """
        Queue a local change and fire the auto-sync trigger if attached.

        Args:
            entity: Entity kind ('contact', 'organization', 'interaction')
            entity_id: Entity id
            op: Operation ('create', 'update')
            payload: JSON-serializable entity state

        Returns:
            Id of the queued change
        """
        with self.database.connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO outbound_changes (entity, entity_id, op, payload, queued_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (entity, entity_id, op, json.dumps(payload), to_db_timestamp(utcnow())),
            )
            change_id = cursor.lastrowid
        if change_id is None:
            raise RuntimeError(f"could not queue {op} of {entity} {entity_id}")

        if self.trigger is not None:
            self.trigger.trigger()
        return change_id

    def pending(self, limit: int | None = None) -> list[OutboundChange]:
        """List changes not yet pushed, oldest first."""
        query = (
            "SELECT id, entity, entity_id, op, payload, queued_at, pushed_at "
            "FROM outbound_changes WHERE pushed_at IS NULL ORDER BY id"
        )
        params: tuple = ()
        if limit is not None:
            query += " LIMIT ?"
            params = (limit,)
        with self.database.connection() as conn:
            return [
                OutboundChange(
                    id=row["id"],
                    entity=row["entity"],
                    entity_id=row["entity_id"],
                    op=row["op"],
                    payload=json.loads(row["payload"]) if row["payload"] else {},
                    queued_at=from_db_timestamp(row["queued_at"]),
                    pushed_at=from_db_timestamp(row["pushed_at"]),
                )
                for row in conn.execute(query, params)
            ]

    def pending_count(self) -> int:
        with self.database.connection() as conn:
            result: int = conn.execute(
                "SELECT COUNT(*) FROM outbound_changes WHERE pushed_at IS NULL"
            ).fetchone()[0]
            return result

    def mark_pushed(self, change_ids: list[int]) -> int:
        """Mark changes as pushed; returns the number updated."""
        if not change_ids:
            return 0
        now = to_db_timestamp(utcnow())
        with self.database.connection() as conn:
            cursor = conn.executemany(
                "UPDATE outbound_changes SET pushed_at = ? WHERE id = ? AND pushed_at IS NULL",
                [(now, change_id) for change_id in change_ids],
            )
            return cursor.rowcount
