from themis.github.api import (
    GitHubInstallationLookup,
    GitHubRepositoryLookup,
    UnavailableInstallationLookup,
)

__all__ = [
    "GitHubInstallationLookup",
    "GitHubRepositoryLookup",
    "UnavailableInstallationLookup",
]
