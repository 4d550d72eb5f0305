"""Exception taxonomy for fatal install steps.

Warning-class failures (index refresh, image pull, group grant, firewall,
poll exhaustion) are logged and never raised.
"""


class ChatstackError(Exception):
    """Base class for every fatal condition; the CLI maps it to exit status 1."""


class PrivilegeError(ChatstackError):
    """Raised when the invoking identity is not allowed to install."""


class RuntimeInstallError(ChatstackError):
    """Raised when the container runtime cannot be installed."""


class ManifestError(ChatstackError):
    """Raised when the service descriptors are inconsistent."""


class ManifestMissingError(ChatstackError):
    """Raised when a command needs an installation root that has no manifest."""


class LaunchError(ChatstackError):
    """Raised when the stack cannot be brought up at all."""


class InstallCancelled(ChatstackError):
    """Raised when the operator declines the confirmation prompt."""


class ConfigError(ChatstackError):
    """Raised when the config file or an environment override holds an unusable value."""
