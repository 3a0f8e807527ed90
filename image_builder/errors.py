from collections.abc import Iterable
from enum import Enum

from image_builder.sanitize import sanitize_error_message, sanitize_url, scrub_secrets


class StepError(RuntimeError):
    """Terminal failure recorded by a step in the state bag."""


class ConfigError(ValueError):
    def __init__(self, errors: list[str], warnings: list[str] | None = None):
        self.errors = list(errors)
        self.warnings = list(warnings or [])
        super().__init__("\n".join(f"* {error}" for error in self.errors))


class BuildError(RuntimeError):
    def __init__(self, *, vm_name: str, detail: str, cancelled: bool = False):
        self.vm_name = vm_name
        self.detail = detail
        self.cancelled = cancelled
        super().__init__(f"build failed vm_name={vm_name}: {detail}")


class VMNotFoundError(LookupError):
    pass


class NoSataControllerError(LookupError):
    pass


class DeployErrorKind(str, Enum):
    AUTHENTICATION = "authentication"
    NOT_FOUND = "not_found"
    TLS = "tls"
    VALIDATION = "validation"
    RESOURCE = "resource"
    NETWORK = "network"
    PERMISSION = "permission"
    CANCELLED = "cancelled"
    GENERIC = "generic"


# First match wins; order matters (a TLS handshake timeout is a TLS problem).
_CLASSIFIERS: list[tuple[DeployErrorKind, tuple[str, ...], str]] = [
    (
        DeployErrorKind.AUTHENTICATION,
        ("401", "unauthorized", "authentication failed", "invalid credentials"),
        "authentication failed when accessing remote source. Verify the remote source credentials",
    ),
    (
        DeployErrorKind.NOT_FOUND,
        ("404", "not found", "no such file", "file does not exist"),
        "remote source file not found. Verify the URL is correct and the file exists",
    ),
    (
        DeployErrorKind.TLS,
        ("certificate", "tls", "ssl", "x509", "handshake"),
        "TLS/SSL certificate error accessing remote source. For test environments consider 'skip_tls_verify'",
    ),
    (
        DeployErrorKind.VALIDATION,
        (
            "invalid ovf",
            "corrupt",
            "malformed",
            "parse",
            "xml",
            "ovf descriptor",
            "invalid format",
            "checksum",
        ),
        "source file validation error. The file may be corrupted, incomplete, or in an invalid format",
    ),
    (
        DeployErrorKind.RESOURCE,
        (
            "insufficient",
            "not enough",
            "out of space",
            "disk space",
            "memory",
            "cpu",
            "resource",
        ),
        "insufficient resources for deployment. Check available storage, memory and CPU",
    ),
    (
        DeployErrorKind.NETWORK,
        (
            "timeout",
            "timed out",
            "connection refused",
            "connection reset",
            "network unreachable",
            "dial",
            "no route to host",
            "no such host",
            "dns",
            "name resolution",
        ),
        "network connectivity error accessing remote source. Check connectivity and firewall settings",
    ),
    (
        DeployErrorKind.PERMISSION,
        ("permission", "access denied", "forbidden", "403"),
        "insufficient permissions for deployment. Verify the hypervisor user privileges",
    ),
    (
        DeployErrorKind.CANCELLED,
        ("cancel", "abort", "interrupt"),
        "deployment was cancelled or interrupted",
    ),
]


def classify_deploy_error(cause: str) -> tuple[DeployErrorKind, str]:
    """Return the error kind and the user-facing message for a sanitized cause."""
    lowered = cause.lower()
    for kind, patterns, hint in _CLASSIFIERS:
        if any(pattern in lowered for pattern in patterns):
            return kind, f"{hint}. Error: {cause}"
    return DeployErrorKind.GENERIC, f"deployment failed: {cause}"


class RemoteDeployError(RuntimeError):
    def __init__(
        self,
        *,
        url: str,
        cause: str,
        operation: str = "OVF deployment failed",
        secrets: Iterable[str | None] = (),
    ):
        secret_values = tuple(secrets)
        self.url = sanitize_url(url)
        self.detail = sanitize_error_message(cause, secret_values)
        self.kind, classified = classify_deploy_error(self.detail)
        self.operation = operation
        message = f"{operation} for remote source '{self.url}': {classified}"
        super().__init__(scrub_secrets(message, secret_values))
