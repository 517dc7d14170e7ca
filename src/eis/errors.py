"""Exception hierarchy for eis.

Errors fall into three classes that the daemon loop treats differently:
transient (retried silently), degraded (logged, next cycle retries) and
fatal (daemon reports and stops).
"""


class EisError(Exception):
    """Base class for all eis errors."""

    pass


class ConfigError(EisError):
    """Raised when the configuration file cannot be loaded or is invalid."""

    pass


class NotInitializedError(EisError):
    """Raised when a command needs an initialized repository."""

    pass


class StoreError(EisError):
    """Raised when the object/ref store cannot be read or written. Fatal."""

    pass


class RefConflictError(EisError):
    """Raised when a compare-and-swap ref update lost a race. Transient."""

    def __init__(self, ref_name: str, expected: str, actual: str, detail: str = ""):
        message = (
            f"Ref {ref_name} moved: expected {expected or '<none>'}, "
            f"found {actual or '<none>'}"
        )
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
        self.ref_name = ref_name
        self.expected = expected
        self.actual = actual
        self.detail = detail


class AnchorReadError(EisError):
    """Raised when the real HEAD cannot be read. Degraded."""

    pass


class WatchUnavailableError(EisError):
    """Raised when the filesystem watch cannot be established or died. Fatal."""

    pass
