from ._version import __version__
from .client import GitHubClient, SetupError, TransportError
from .installer import InstallResult, Installer, acquire

__all__ = [
    "GitHubClient",
    "InstallResult",
    "Installer",
    "SetupError",
    "TransportError",
    "__version__",
    "acquire",
]
