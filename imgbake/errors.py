"""Error types raised by config preparation, provider calls, and build steps."""


class ImgBakeError(Exception):
    """Base class for all imgbake errors."""


class ConfigError(ImgBakeError):
    """One or more configuration problems, reported together."""

    def __init__(self, errors):
        self.errors = list(errors)
        super().__init__("\n".join(f"* {e}" for e in self.errors))


class ProviderError(ImgBakeError):
    """A provider API call failed.

    ``retryable`` is True for failures worth polling through (network errors,
    rate limiting, 5xx); validation and auth failures are permanent.
    """

    def __init__(self, message, status_code=None, retryable=False):
        self.status_code = status_code
        self.retryable = retryable
        super().__init__(message)


class StateTimeoutError(ImgBakeError):
    """The provider did not reach the expected state within the timeout."""


class NoAddressError(StateTimeoutError):
    """No network address was assigned to the instance within the timeout."""


class InstanceFailedError(ImgBakeError):
    """The provider reported the instance as failed."""


class CommunicatorError(ImgBakeError):
    """Could not establish a remote connection to the instance."""


class ProvisionError(ImgBakeError):
    """A provisioner exited with an error on the remote instance."""


class NotYetSetError(ImgBakeError):
    """A build state value was read before any step produced it."""


class BuildCancelledError(ImgBakeError):
    """The build was cancelled before it could finish."""


class BuildInvariantError(RuntimeError):
    """The build finished without an error and without an image. This is a bug."""
