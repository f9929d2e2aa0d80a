"""
Registry Error Taxonomy

Listing failures are raised to the caller as a single error. Batch item
failures are wrapped in ItemOperationError and delivered inside the
progress stream instead of being raised.
"""

from typing import Any, Optional


class RegistryError(Exception):
    """Base error carrying a user-facing message and the underlying cause"""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message


class RegistryHTTPError(RegistryError):
    """Registry answered with a non-success status, or could not be reached (status 0)"""

    def __init__(self, message: str, status_code: int = 0, url: str = "", cause: Optional[BaseException] = None):
        super().__init__(message, cause)
        self.status_code = status_code
        self.url = url

    @property
    def not_found(self) -> bool:
        return self.status_code == 404


class PageFetchError(RegistryError):
    """A paginated catalog or tag walk could not complete"""


class EmptyTagListing(RegistryError):
    """First tag page answered 404; the repository holds no tags"""


class ManifestResolutionError(RegistryError):
    """Neither manifest schema could be retrieved for a tag"""

    def __init__(self, tag: str, cause: Optional[BaseException] = None):
        super().__init__(f"Unable to retrieve tag {tag}", cause)
        self.tag = tag


class ItemOperationError(RegistryError):
    """One batch item failed; the rest of the batch carried on"""

    def __init__(self, item: Any, cause: Optional[BaseException] = None):
        super().__init__(f"Operation failed for {item!r}", cause)
        self.item = item


class ConfigurationError(RegistryError):
    """A registry reference could not be resolved against the configuration"""
