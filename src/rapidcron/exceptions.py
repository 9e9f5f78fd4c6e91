"""Custom exceptions for rapidcron."""


class RapidCronError(Exception):
    """Base exception for rapidcron."""


class ConfigurationError(RapidCronError):
    """Unknown task type, malformed cron expression or payload, bad config.

    Never retried: an instance failing with this error is terminal.
    """


class TransientExecutionError(RapidCronError):
    """Plugin-reported failure (non-zero exit, HTTP error, network error)."""


class ExecutionTimeoutError(TransientExecutionError):
    """Execution exceeded its timeout."""


class ClaimConflict(RapidCronError):
    """Another executor won the claim race for an instance."""


class DependencyNotReady(RapidCronError):
    """A dependency has no successful qualifying instance yet."""


class LeaseExpired(RapidCronError):
    """The owning executor stopped renewing its claim and is presumed dead."""


class TaskNotFound(RapidCronError):
    """Task not found in database."""


class InstanceNotFound(RapidCronError):
    """Task instance not found in database."""


class TaskValidationError(RapidCronError):
    """Task definition rejected by the admin API."""


class ExecutorAlreadyRegistered(RapidCronError):
    """Executor plugin already registered for that task type."""
