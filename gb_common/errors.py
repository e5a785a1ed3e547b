"""Shared error taxonomy for grid-bench."""

from __future__ import annotations

from typing import Any, Mapping, Sequence


def _normalize_context_value(value: Any) -> Any:
    if isinstance(value, Mapping):
        return normalize_context(value)
    if isinstance(value, (list, tuple)):
        return [_normalize_context_value(item) for item in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


def normalize_context(context: Mapping[str, Any]) -> dict[str, Any]:
    """Return a JSON-friendly copy of an error context mapping."""
    return {key: _normalize_context_value(val) for key, val in context.items()}


class GBError(Exception):
    """Base error type for typed failure handling."""

    def __init__(
        self,
        message: str,
        *,
        context: Mapping[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.context = normalize_context(context or {})
        if cause is not None:
            self.__cause__ = cause

    @property
    def error_type(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.error_type, "message": str(self), "context": self.context}


class ExecutionError(GBError):
    """An external program could not be spawned or exited non-zero."""

    def __init__(
        self,
        program: str,
        args: Sequence[str],
        *,
        returncode: int | None = None,
        stdout: str = "",
        stderr: str = "",
        cause: BaseException | None = None,
    ) -> None:
        self.program = program
        self.args_list = list(args)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        if returncode is None:
            message = f"failed to execute {program}"
            if cause is not None:
                message = f"{message}: {cause}"
        else:
            message = f"{program} exited with status {returncode}"
            detail = (stderr or stdout).strip()
            if detail:
                message = f"{message}: {detail}"
        super().__init__(
            message,
            context={
                "program": program,
                "args": self.args_list,
                "returncode": returncode,
            },
            cause=cause,
        )


class RetryExhausted(GBError):
    """Every attempt of a retried invocation failed."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"giving up after {attempts} attempts: {last_error}",
            context={"attempts": attempts},
            cause=last_error,
        )


class InvocationCancelled(GBError):
    """A retried invocation was abandoned through a cancel token."""


class RegistryUnavailable(GBError):
    """The registry could not be reached or answered with garbage."""


class PayloadMismatch(GBError):
    """A reservation payload does not match the requested shape."""


class ProvisionError(GBError):
    """The provisioning tool failed or a reservation did not converge."""


class ProvisionParseError(ProvisionError):
    """Provisioning output did not contain a resource identifier."""


class ProvisionTimeout(ProvisionError):
    """A reservation never reached a terminal state within the poll budget."""


class ProvisionCancelled(ProvisionError):
    """Waiting for a reservation was abandoned through a cancel token."""


class DeprovisionError(ProvisionError):
    """Deleting a reservation failed; later reservations were not attempted."""


class InsufficientNodesError(ProvisionError):
    """Fewer eligible nodes than reservations requested."""


class NodeSelectionError(ProvisionError):
    """No node qualifies for automatic placement."""


class ConfigurationError(GBError):
    """Failure due to invalid configuration."""


class BenchmarkStepError(GBError):
    """A benchmark step failed; the cause holds the underlying error."""

    def __init__(self, step: str, cause: BaseException) -> None:
        self.step = step
        super().__init__(f"{step}: {cause}", context={"step": step}, cause=cause)


class NoCleanupContext(RuntimeError):
    """Cleanup registration outside an open cleanup stack.

    This is a programming defect and is deliberately not a ``GBError``.
    """


def error_to_payload(error: GBError) -> dict[str, Any]:
    """Convert a GBError to a log/report payload."""
    return {
        "error_type": error.error_type,
        "error": str(error),
        "error_context": error.context,
    }
