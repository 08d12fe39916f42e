"""Task executor backends."""

from jobline.orchestrator.backend.base import CancellationToken, TaskBackend
from jobline.orchestrator.backend.cli_backend import CommandBackend
from jobline.orchestrator.backend.echo_backend import EchoBackend

__all__ = [
    "CancellationToken",
    "CommandBackend",
    "EchoBackend",
    "TaskBackend",
]
