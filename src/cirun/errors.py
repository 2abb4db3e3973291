# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


class CirunError(Exception):
    """Base class for every error raised by cirun itself."""


@dataclass
class PipelineError(CirunError):
    """
    A pipeline document or run violates a structural contract.

    Raised at construction time (duplicate job names, unknown `needs`,
    dependency cycles, jobs without steps, runs without jobs) so a bad
    document never turns into an empty success.
    """
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"PipelineError: {self.message}"]
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


@dataclass
class WorkflowLoadError(CirunError):
    """A workflow file could not be found or did not define a pipeline."""
    path: str
    message: str

    def __str__(self) -> str:
        return f"WorkflowLoadError: {self.message}\npath={self.path}"
