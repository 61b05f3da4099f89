"""
Hierarchy Assembly Module
"""
from .assembler import (
    BrandResolution,
    HierarchyAssembler,
    build_hierarchy,
    build_hierarchy_from_buckets,
)
from .frames import rows_to_frame
from .periods import DatePreset, HierarchyRequest, previous_period
from .service import HierarchyFetchError, HierarchyIntegrityError, HierarchyService
from .sources import HierarchyDataSource, InMemoryDataSource
from .validation import (
    HierarchyValidator,
    ValidationCheck,
    ValidationResult,
    ValidationSeverity,
    ValidationStatus,
    create_hierarchy_validator,
)

__all__ = [
    "BrandResolution",
    "HierarchyAssembler",
    "build_hierarchy",
    "build_hierarchy_from_buckets",
    "rows_to_frame",
    "DatePreset",
    "HierarchyRequest",
    "previous_period",
    "HierarchyFetchError",
    "HierarchyIntegrityError",
    "HierarchyService",
    "HierarchyDataSource",
    "InMemoryDataSource",
    "HierarchyValidator",
    "ValidationCheck",
    "ValidationResult",
    "ValidationSeverity",
    "ValidationStatus",
    "create_hierarchy_validator",
]
