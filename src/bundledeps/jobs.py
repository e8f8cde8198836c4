from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

from .errors import BundledepsError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Message:
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"message": self.message}


class Job:
    """A named unit of build work; collects its own diagnostics."""

    def __init__(self, title: str) -> None:
        self.title = title
        self.messages: list[Message] = []

    def __repr__(self) -> str:
        return f"Job({self.title!r}, messages={len(self.messages)})"

    def error(self, message: str) -> None:
        logger.error("%s: %s", self.title, message)
        self.messages.append(Message(message))

    def has_messages(self) -> bool:
        return bool(self.messages)

    def to_dict(self) -> dict[str, Any]:
        return {"jobTitle": self.title, "messages": [m.to_dict() for m in self.messages]}


class MessageSet:
    """
    Diagnostics of one build session, one Job per unit of work.

    Packages may build on different threads; each gets its own Job, so a
    failure in one never hides or interrupts the others.
    """

    def __init__(self) -> None:
        self.jobs: list[Job] = []
        self._lock = threading.Lock()

    def add_job(self, title: str) -> Job:
        job = Job(title)
        with self._lock:
            self.jobs.append(job)
        return job

    @contextmanager
    def job(self, title: str) -> Iterator[Job]:
        job = self.add_job(title)
        try:
            yield job
        except BundledepsError as e:
            job.error(str(e))

    def find_job(self, title: str) -> Job | None:
        with self._lock:
            for job in self.jobs:
                if job.title == title:
                    return job
        return None

    def has_messages(self) -> bool:
        with self._lock:
            return any(job.has_messages() for job in self.jobs)

    def errors(self) -> list[str]:
        with self._lock:
            return [f"{job.title}: {m.message}" for job in self.jobs for m in job.messages]

    def format_messages(self) -> str:
        lines: list[str] = []
        with self._lock:
            for job in self.jobs:
                if not job.messages:
                    continue
                lines.append(f"While {job.title}:")
                lines.extend(f"error: {m.message}" for m in job.messages)
                lines.append("")
        return "\n".join(lines)

    def to_list(self) -> list[dict[str, Any]]:
        with self._lock:
            return [job.to_dict() for job in self.jobs if job.messages]
