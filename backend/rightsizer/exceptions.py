"""
Rightsizer exception hierarchy.

Request-level errors propagate to the caller as typed failures.
Candidate-level pricing errors are recovered by the selector.
Pipeline errors abort the current refresh cycle only.
"""
from typing import Optional


class RightsizerError(Exception):
    """Base class for all rightsizer errors."""


class InvalidInputError(RightsizerError):
    """
    Raised when a request is malformed or cannot be served.

    Rejected before any computation and never retried.
    """

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        if field:
            message = f"INVALID INPUT\n  Field: {field}\n  Reason: {message}"
        super().__init__(message)


class NotFoundError(RightsizerError):
    """Raised when the current resource is absent from the catalog."""

    def __init__(self, resource: str, region: str, detail: str = ""):
        self.resource = resource
        self.region = region

        message = (
            f"NOT FOUND\n"
            f"  Resource: {resource}\n"
            f"  Region: {region}\n"
        )
        if detail:
            message += f"  Detail: {detail}"
        super().__init__(message)


class NoFeasibleConfigurationError(NotFoundError):
    """
    Raised when no catalog row satisfies the needed capacity and constraints.

    This is a normal outcome: the current configuration is retained.
    """

    def __init__(self, resource: str, region: str):
        super().__init__(resource, region, "no feasible configuration")


class ComponentPricingUnavailableError(RightsizerError):
    """
    Raised when a candidate lacks a price component its family charges for.

    Fatal to that candidate only, never priced as zero.
    """

    def __init__(self, family: str, region: str, dimension: str):
        self.family = family
        self.region = region
        self.dimension = dimension

        message = (
            f"PRICE COMPONENT NOT FOUND\n"
            f"  Family: {family}\n"
            f"  Region: {region}\n"
            f"  Dimension: {dimension}"
        )
        super().__init__(message)


class UpstreamUnavailableError(RightsizerError):
    """Raised when the catalog cannot be read (missing view, database down)."""

    def __init__(self, catalog: str, reason: str):
        self.catalog = catalog
        self.reason = reason
        super().__init__(f"CATALOG UNAVAILABLE\n  Catalog: {catalog}\n  Reason: {reason}")


class UpstreamDataFaultError(RightsizerError):
    """Raised when the refresh pipeline's data source fails."""

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"UPSTREAM DATA FAULT\n  Source: {source}\n  Reason: {reason}")


class RowValidationError(UpstreamDataFaultError):
    """Raised for a single malformed upstream row; the row is skipped."""

    def __init__(self, column: str, reason: str):
        self.column = column
        super().__init__(column, reason)


class CatalogSwapFaultError(RightsizerError):
    """
    Raised when the atomic view swap fails.

    The transaction has been rolled back in full; old data remains authoritative.
    """

    def __init__(self, view: str, table: str, reason: str):
        self.view = view
        self.table = table
        self.reason = reason

        message = (
            f"CATALOG SWAP FAILED\n"
            f"  View: {view}\n"
            f"  Target table: {table}\n"
            f"  Reason: {reason}\n"
            f"  Status: ROLLED BACK. PREVIOUS CATALOG STILL SERVING."
        )
        super().__init__(message)
