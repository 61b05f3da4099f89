"""
Unit Tests - Hierarchy Validation
"""
import pytest

from controlling.hierarchy import (
    HierarchyValidator,
    ValidationSeverity,
    ValidationStatus,
    build_hierarchy,
    create_hierarchy_validator,
    rows_to_frame,
)
from controlling.models import DerivedMetrics, HierarchyLevel, HierarchyRow


def _row(row_id, level, parent_id=None, **metrics):
    return HierarchyRow(
        id=row_id,
        level=level,
        name=row_id,
        company_id="1",
        parent_id=parent_id,
        metrics=DerivedMetrics(**metrics),
    )


@pytest.fixture
def consistent_rows():
    return [
        _row("company-1", HierarchyLevel.COMPANY, orders=5, revenue=50.0),
        _row("brand::1::10", HierarchyLevel.BRAND, "company-1", orders=5, revenue=50.0),
        _row("address::1::100", HierarchyLevel.ADDRESS, "brand::1::10", orders=5, revenue=50.0),
        _row("channel::1::100::x", HierarchyLevel.CHANNEL, "address::1::100", orders=2, revenue=20.0),
        _row("channel::1::100::y", HierarchyLevel.CHANNEL, "address::1::100", orders=3, revenue=30.0),
    ]


class TestHierarchyValidator:
    """Tests for HierarchyValidator"""

    def test_consistent_rows_pass(self, consistent_rows):
        result = create_hierarchy_validator().validate(consistent_rows)

        assert result.status == ValidationStatus.PASSED
        assert result.total_checks == 4
        assert result.success_rate == 100.0

    def test_duplicate_ids_reported(self, consistent_rows):
        """Test duplicated ids are an error with the offending id listed"""
        rows = consistent_rows + [consistent_rows[3]]

        result = HierarchyValidator().add_unique_id_check().validate(rows)

        check = result.get("unique_id")
        assert result.status == ValidationStatus.FAILED
        assert check.severity == ValidationSeverity.ERROR
        assert check.row_ids == ["channel::1::100::x"]
        assert check.failed_rows == 2

    def test_dangling_parent(self, consistent_rows):
        rows = consistent_rows + [_row("address::1::999", HierarchyLevel.ADDRESS, "brand::1::missing")]

        result = HierarchyValidator().add_parent_check().validate(rows)

        assert result.status == ValidationStatus.FAILED
        assert result.get("parent_exists").row_ids == ["address::1::999"]

    def test_parent_shape_by_level(self):
        """Test companies have no parent and every other level has one"""
        rows = [
            _row("company-1", HierarchyLevel.COMPANY, "company-2"),
            _row("company-2", HierarchyLevel.COMPANY),
            _row("brand::1::10", HierarchyLevel.BRAND),
        ]

        result = HierarchyValidator().add_parent_check().validate(rows)

        assert result.get("parent_exists").row_ids == ["company-1", "brand::1::10"]

    def test_dangling_parents_keep_row_order(self, consistent_rows):
        """Test duplicated ids do not multiply rows and dangling rows keep their order"""
        rows = [
            _row("address::1::998", HierarchyLevel.ADDRESS, "brand::1::gone"),
            *consistent_rows,
            consistent_rows[1],
            _row("address::1::997", HierarchyLevel.ADDRESS, "brand::1::gone"),
        ]

        check = HierarchyValidator().add_parent_check().validate(rows).get("parent_exists")

        assert check.row_ids == ["address::1::998", "address::1::997"]
        assert check.details["parent_ids"] == ["brand::1::gone", "brand::1::gone"]
        assert check.total_rows == len(rows)

    def test_negative_metrics(self, consistent_rows):
        rows = consistent_rows + [_row("brand::1::11", HierarchyLevel.BRAND, "company-1", refunds=-1.0)]

        result = HierarchyValidator().add_non_negative_check().validate(rows)

        assert result.get("non_negative").row_ids == ["brand::1::11"]

    def test_negative_change_is_allowed(self):
        rows = [_row("company-1", HierarchyLevel.COMPANY, revenue_change_pct=-40.0)]

        result = HierarchyValidator().add_non_negative_check().validate(rows)

        assert result.status == ValidationStatus.PASSED

    def test_rollup_drift_is_warning(self, consistent_rows):
        """Test a parent differing from its children is a warning"""
        rows = list(consistent_rows)
        rows[1] = _row("brand::1::10", HierarchyLevel.BRAND, "company-1", orders=6, revenue=50.0)

        result = HierarchyValidator().add_rollup_check().validate(rows)

        check = result.get("rollup_consistency")
        assert result.status == ValidationStatus.PARTIAL
        assert check.severity == ValidationSeverity.WARNING
        # Brand exceeds its address; company no longer matches its brand
        assert sorted(check.row_ids) == ["brand::1::10", "company-1"]

    def test_rollup_tolerance(self, consistent_rows):
        rows = list(consistent_rows)
        rows[0] = _row("company-1", HierarchyLevel.COMPANY, orders=5, revenue=50.004)

        result = HierarchyValidator().add_rollup_check(tolerance=0.01).validate(rows)

        assert result.status == ValidationStatus.PASSED

    def test_strict_mode_fails_on_warnings(self, consistent_rows):
        rows = list(consistent_rows)
        rows[2] = _row("address::1::100", HierarchyLevel.ADDRESS, "brand::1::10", orders=9, revenue=50.0)

        result = HierarchyValidator(strict_mode=True).add_rollup_check().validate(rows)

        assert result.status == ValidationStatus.FAILED

    def test_empty_rows(self):
        result = create_hierarchy_validator().validate([])

        assert result.status == ValidationStatus.PASSED

    def test_reset(self):
        validator = create_hierarchy_validator()
        validator.reset()

        assert validator.validate([]).total_checks == 0


class TestRowsToFrame:
    """Tests for flattening rows into a DataFrame"""

    def test_columns_and_values(self, consistent_rows):
        df = rows_to_frame(consistent_rows)

        assert df.height == 5
        assert df["id"].to_list()[0] == "company-1"
        assert df["level"].to_list()[-1] == "channel"
        assert df["orders"].sum() == 20
        assert "rating_by_channel" not in df.columns

    def test_empty(self):
        df = rows_to_frame([])

        assert df.height == 0
        assert "revenue" in df.columns


class TestAssembledDiagnostics:
    """Tests for diagnostics attached by build_hierarchy"""

    def test_facts_for_unknown_address(self, single_address_dimensions, make_fact, hierarchy_settings):
        """Test facts for an address missing from the dimensions surface as rollup drift"""
        facts = [make_fact(), make_fact(address_id="555")]

        result = build_hierarchy(single_address_dimensions, facts, [], settings=hierarchy_settings)

        assert result.validation.status == ValidationStatus.PARTIAL
        assert [check.name for check in result.diagnostics] == ["rollup_consistency"]
        assert result.diagnostics[0].row_ids == ["brand::1::10"]
