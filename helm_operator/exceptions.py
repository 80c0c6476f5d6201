"""Exceptions related to helm-operator."""

__all__ = [
    "HelmOperatorException",
    "InputException",
    "CommandException",
    "HelmException",
    "KubectlException",
    "ConflictError",
    "ObjectNotFoundError",
    "GitError",
    "ChartNotReadyError",
    "ChartUnavailableError",
    "PolicyError",
    "ReleaseOwnershipError",
    "ReleaseStateError",
    "ValuesException",
    "QueueShutDownError",
]


class HelmOperatorException(Exception):
    """Generic base exception used for this library."""


class InputException(HelmOperatorException):
    """Raised when a resource or its values are not formatted as expected."""


class ValuesException(InputException):
    """Raised when the values for a release could not be composed."""


class CommandException(HelmOperatorException):
    """Raised when there is a failure running a subcommand."""


class HelmException(CommandException):
    """Raised when there is a failure running a helm command."""


class KubectlException(CommandException):
    """Raised when there is a failure running a kubectl command."""


class ConflictError(KubectlException):
    """Raised when an update was rejected because the object was modified."""


class ObjectNotFoundError(KubectlException):
    """Raised when an object does not exist in the cluster."""


class GitError(HelmOperatorException):
    """Raised when a git mirror operation fails."""


class ChartNotReadyError(HelmOperatorException):
    """Raised when the chart source is not ready yet.

    The release is reconciled again once the source signals a change.
    """


class ChartUnavailableError(HelmOperatorException):
    """Raised when a ready chart source could not produce the chart."""


class PolicyError(HelmOperatorException):
    """Raised when the release can't be acted on as declared."""


class ReleaseOwnershipError(PolicyError):
    """Raised when a release is managed by another HelmRelease."""

    def __init__(self, release_name: str, owner: str) -> None:
        super().__init__(
            f"release '{release_name}' does not belong to this HelmRelease, "
            f"it is managed by '{owner}'"
        )
        self.release_name = release_name
        self.owner = owner


class ReleaseStateError(PolicyError):
    """Raised when the state of the release prevents it from being upgraded."""


class QueueShutDownError(HelmOperatorException):
    """Raised when getting an item from a queue that was shut down."""
