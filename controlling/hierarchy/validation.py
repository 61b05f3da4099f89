"""
Hierarchy Validation Module

Rule-based integrity checks over an assembled hierarchy, run on a polars frame
of its rows. A failed check is a diagnostic, not an exception: it carries the
offending row ids so tests and callers can detect merge defects
deterministically.

Checks:
- Row id uniqueness
- Parent existence and level shape
- Non-negative additive metrics
- Rollup consistency (parent equals the sum of its direct children)
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

import polars as pl
import structlog

from controlling.hierarchy.frames import rows_to_frame
from controlling.models import HierarchyLevel, HierarchyRow

logger = structlog.get_logger(__name__)

ROLLUP_METRICS = ["orders", "revenue", "discounts", "refunds", "ad_spend"]
ADDITIVE_METRICS = ROLLUP_METRICS + [
    "new_customers",
    "promoted_orders",
    "ad_revenue",
    "impressions",
    "clicks",
    "ad_orders",
    "review_count",
]


class ValidationSeverity(str, Enum):
    """Severity levels for validation failures"""
    ERROR = "error"  # Correctness defect
    WARNING = "warning"  # Suspicious, e.g. facts for entities missing from dimensions
    INFO = "info"


class ValidationStatus(str, Enum):
    """Overall validation status"""
    PASSED = "passed"
    FAILED = "failed"
    PARTIAL = "partial"


@dataclass
class ValidationCheck:
    """Single validation check result"""
    name: str
    passed: bool
    severity: ValidationSeverity
    message: str
    details: Optional[Dict[str, Any]] = None
    failed_rows: int = 0
    total_rows: int = 0

    @property
    def row_ids(self) -> List[str]:
        """Ids of the offending rows, when the check reports them"""
        return list((self.details or {}).get("row_ids", []))


@dataclass
class ValidationResult:
    """Complete validation suite result"""
    status: ValidationStatus
    total_checks: int
    passed_checks: int
    failed_checks: int
    warning_count: int
    checks: List[ValidationCheck] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    @property
    def success_rate(self) -> float:
        """Percentage of passed checks"""
        if self.total_checks == 0:
            return 100.0
        return (self.passed_checks / self.total_checks) * 100

    def get(self, name: str) -> Optional[ValidationCheck]:
        return next((c for c in self.checks if c.name == name), None)


class HierarchyValidator:
    """
    Validator for assembled hierarchy rows.

    Example:
        validator = HierarchyValidator().add_unique_id_check().add_parent_check()
        result = validator.validate(rows)
    """

    def __init__(self, strict_mode: bool = False):
        self.strict_mode = strict_mode  # Warnings fail the suite
        self._checks: List[Callable[[pl.DataFrame], ValidationCheck]] = []

    def reset(self) -> None:
        """Reset validator state"""
        self._checks = []

    def add_unique_id_check(self, severity: ValidationSeverity = ValidationSeverity.ERROR) -> "HierarchyValidator":
        """Add check that row ids are pairwise distinct"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            duplicated = (
                df.group_by("id", maintain_order=True)
                .agg(pl.len().alias("count"))
                .filter(pl.col("count") > 1)
            )
            ids = duplicated["id"].to_list()
            passed = not ids
            return ValidationCheck(
                name="unique_id",
                passed=passed,
                severity=severity,
                message="Row ids are unique" if passed else f"{len(ids)} row ids are duplicated",
                details={"row_ids": ids, "counts": duplicated["count"].to_list()},
                failed_rows=int(duplicated["count"].sum()) if ids else 0,
                total_rows=df.height,
            )

        self._checks.append(check)
        return self

    def add_parent_check(self, severity: ValidationSeverity = ValidationSeverity.ERROR) -> "HierarchyValidator":
        """Add check that every non-company row has a parent within the result"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            known = (
                df.select(pl.col("id").alias("parent_id"))
                .unique()
                .with_columns(pl.lit(True).alias("_parent_known"))
            )
            checked = df.with_row_index("_row").join(known, on="parent_id", how="left").sort("_row")
            is_company = pl.col("level") == HierarchyLevel.COMPANY.value
            broken = checked.filter(
                (is_company & pl.col("parent_id").is_not_null())
                | (~is_company & pl.col("parent_id").is_null())
                | (pl.col("parent_id").is_not_null() & pl.col("_parent_known").is_null())
            )
            ids = broken["id"].to_list()
            passed = not ids
            return ValidationCheck(
                name="parent_exists",
                passed=passed,
                severity=severity,
                message="Every parent resolves" if passed else f"{len(ids)} rows have a missing or invalid parent",
                details={"row_ids": ids, "parent_ids": broken["parent_id"].to_list()},
                failed_rows=len(ids),
                total_rows=df.height,
            )

        self._checks.append(check)
        return self

    def add_non_negative_check(
        self,
        columns: Sequence[str] = tuple(ADDITIVE_METRICS),
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "HierarchyValidator":
        """Add check that additive metrics are not negative"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            negative = df.filter(pl.any_horizontal([pl.col(c) < 0 for c in columns]))
            ids = negative["id"].to_list()
            passed = not ids
            return ValidationCheck(
                name="non_negative",
                passed=passed,
                severity=severity,
                message="Additive metrics are non-negative" if passed else f"{len(ids)} rows have negative metrics",
                details={"row_ids": ids, "columns": list(columns)},
                failed_rows=len(ids),
                total_rows=df.height,
            )

        self._checks.append(check)
        return self

    def add_rollup_check(
        self,
        columns: Sequence[str] = tuple(ROLLUP_METRICS),
        tolerance: float = 0.01,
        severity: ValidationSeverity = ValidationSeverity.WARNING,
    ) -> "HierarchyValidator":
        """Add check that each non-leaf row equals the sum of its direct children"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            child_sums = (
                df.filter(pl.col("parent_id").is_not_null())
                .group_by("parent_id")
                .agg([pl.col(c).sum().cast(pl.Float64).alias(f"_children_{c}") for c in columns])
            )
            parents = df.filter(pl.col("level") != HierarchyLevel.CHANNEL.value).join(
                child_sums, left_on="id", right_on="parent_id", how="left"
            )
            drift = pl.any_horizontal([
                (pl.col(c).cast(pl.Float64) - pl.col(f"_children_{c}").fill_null(0.0)).abs() > tolerance
                for c in columns
            ])
            mismatched = parents.filter(drift)
            ids = mismatched["id"].to_list()
            passed = not ids
            return ValidationCheck(
                name="rollup_consistency",
                passed=passed,
                severity=severity,
                message="Parents equal the sum of their children" if passed else f"{len(ids)} rows differ from their children's sum",
                details={"row_ids": ids, "columns": list(columns), "tolerance": tolerance},
                failed_rows=len(ids),
                total_rows=parents.height,
            )

        self._checks.append(check)
        return self

    def validate(self, rows: Sequence[HierarchyRow]) -> ValidationResult:
        """
        Run all validation checks on hierarchy rows.

        Args:
            rows: Assembled hierarchy rows

        Returns:
            ValidationResult with all check results
        """
        started_at = datetime.utcnow()
        df = rows_to_frame(rows)
        results = []

        for check_func in self._checks:
            result = check_func(df)
            results.append(result)

            if not result.passed:
                logger.warning(
                    f"Hierarchy validation failed: {result.name}",
                    message=result.message,
                    severity=result.severity.value,
                    row_ids=result.row_ids[:20],
                )

        passed_checks = sum(1 for r in results if r.passed)
        failed_checks = sum(1 for r in results if not r.passed and r.severity == ValidationSeverity.ERROR)
        warning_count = sum(1 for r in results if not r.passed and r.severity == ValidationSeverity.WARNING)

        if failed_checks > 0:
            status = ValidationStatus.FAILED
        elif warning_count > 0 and self.strict_mode:
            status = ValidationStatus.FAILED
        elif warning_count > 0:
            status = ValidationStatus.PARTIAL
        else:
            status = ValidationStatus.PASSED

        logger.debug(
            f"Hierarchy validation complete: {status.value}",
            rows=df.height,
            passed=passed_checks,
            failed=failed_checks,
            warnings=warning_count,
        )

        return ValidationResult(
            status=status,
            total_checks=len(results),
            passed_checks=passed_checks,
            failed_checks=failed_checks,
            warning_count=warning_count,
            checks=results,
            started_at=started_at,
            completed_at=datetime.utcnow(),
        )


def create_hierarchy_validator(tolerance: float = 0.01, strict_mode: bool = False) -> HierarchyValidator:
    """Create the standard validator for assembled hierarchies"""
    return (
        HierarchyValidator(strict_mode=strict_mode)
        .add_unique_id_check()
        .add_parent_check()
        .add_non_negative_check()
        .add_rollup_check(tolerance=tolerance)
    )
