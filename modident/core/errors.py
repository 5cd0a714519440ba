# ==============================================================================
# ERRORS MODULE
# ==============================================================================
# Exception taxonomy for archive parsing, fingerprinting and analysis.
#
#   ModIdentError
#     ├── MalformedContainer        bad magic, truncated field, tree size mismatch
#     ├── UnsupportedVersion        known container, unhandled format revision
#     ├── DigestComputationFailure  backing file could not be read for hashing
#     ├── ContainerTooLarge         file exceeds the configured size limit
#     └── CatalogUnavailable        catalog database location cannot be prepared
#
# Errors raised by a candidate store during lookups are NOT wrapped in any of
# these. A store failure and "no match" must stay distinguishable for callers.
# ==============================================================================

from typing import Optional


class ModIdentError(Exception):
    """Base class for all errors raised by this package."""


class MalformedContainer(ModIdentError):
    """
    The input is not a structurally valid container.

    Attributes:
        offset (int): Byte offset where the problem was detected, if known
    """

    def __init__(self, message: str, offset: Optional[int] = None):
        if offset is not None:
            message = f"{message} (at offset {offset})"
        super().__init__(message)
        self.offset = offset


class UnsupportedVersion(ModIdentError):
    """The container signature is valid but its version is not handled."""

    def __init__(self, version: int):
        super().__init__(f"Unsupported VPK version: {version}")
        self.version = version


class DigestComputationFailure(ModIdentError):
    """A digest could not be computed, e.g. the backing file is unreadable."""


class ContainerTooLarge(ModIdentError):
    """The archive is larger than the configured maximum size."""

    def __init__(self, size: int, limit: int):
        super().__init__(
            f"File size {size / (1024 * 1024):.1f}MB exceeds maximum limit of "
            f"{limit / (1024 * 1024):.1f}MB"
        )
        self.size = size
        self.limit = limit


class CatalogUnavailable(ModIdentError):
    """The catalog database could not be opened, e.g. its directory cannot be created."""
