"""Helpers for steps that absorb a task cancellation instead of raising it."""

from __future__ import annotations

import asyncio


def acknowledge_cancel() -> None:
    """Mark a pending cancellation of the current task as handled.

    On Python 3.11+ this undoes the task's cancel request so later awaits in
    the same task run normally. Older interpreters keep no such count.
    """
    task = asyncio.current_task()
    if task is not None and hasattr(task, "uncancel"):
        task.uncancel()
