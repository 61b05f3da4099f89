"""
Unit Tests - Dimension Deduplication and Grouping
"""
from datetime import date

import pytest

from controlling.config import HierarchySettings
from controlling.dimensions import (
    address_key,
    deduplicate_and_filter_deleted,
    deduplicate_dimensions,
    deduplicate_latest,
    expand_entity_ids,
    group_entities,
    identity_key,
    name_key,
    normalize_address,
    prepare_dimensions,
    resolve_channel_id,
)
from controlling.models import AddressDim, BrandDim, ChannelDim, CompanyDim, DimensionSet

JAN, FEB, MAR = date(2024, 1, 1), date(2024, 2, 1), date(2024, 3, 1)


class TestDeduplicateLatest:
    """Tests for snapshot deduplication"""

    def test_keeps_most_recent_snapshot(self):
        """Test the latest snapshot wins regardless of input order"""
        records = [
            CompanyDim(id="1", name="Old", snapshot_month=FEB),
            CompanyDim(id="1", name="New", snapshot_month=MAR),
            CompanyDim(id="1", name="Oldest", snapshot_month=JAN),
        ]

        result = deduplicate_latest(records)

        assert len(result) == 1
        assert result[0].name == "New"

    def test_equal_markers_keep_first(self):
        """Test ties keep the earlier record"""
        records = [
            CompanyDim(id="1", name="First", snapshot_month=JAN),
            CompanyDim(id="1", name="Second", snapshot_month=JAN),
        ]

        assert deduplicate_latest(records)[0].name == "First"

    def test_missing_marker_is_oldest(self):
        """Test records without a marker lose against dated ones"""
        records = [
            CompanyDim(id="1", name="Dated", snapshot_month=JAN),
            CompanyDim(id="1", name="Undated"),
        ]

        assert deduplicate_latest(records)[0].name == "Dated"

    def test_one_record_per_entity(self):
        """Test one record per id, in order of first appearance"""
        records = [
            CompanyDim(id="2", name="B", snapshot_month=JAN),
            CompanyDim(id="1", name="A", snapshot_month=JAN),
            CompanyDim(id="2", name="B2", snapshot_month=FEB),
        ]

        result = deduplicate_latest(records)

        assert [r.id for r in result] == ["2", "1"]
        assert result[0].name == "B2"

    def test_idempotent(self):
        """Test deduplicating a deduplicated list returns an identical list"""
        records = [
            BrandDim(id="10", name="A", company_id="1", snapshot_month=JAN),
            BrandDim(id="10", name="A", company_id="1", snapshot_month=FEB, deleted=True),
            BrandDim(id="11", name="B", company_id="1", snapshot_month=JAN),
        ]

        once = deduplicate_latest(records)

        assert deduplicate_latest(once) == once

    def test_winner_independent_of_order(self):
        """Test the same winners for any permutation of the input"""
        records = [
            CompanyDim(id="1", name="Jan", snapshot_month=JAN),
            CompanyDim(id="1", name="Mar", snapshot_month=MAR),
            CompanyDim(id="2", name="Feb", snapshot_month=FEB),
        ]

        forward = {r.id: r for r in deduplicate_latest(records)}
        backward = {r.id: r for r in deduplicate_latest(list(reversed(records)))}

        assert forward == backward

    def test_none_raises(self):
        """Test a missing record list is a contract violation"""
        with pytest.raises(ValueError):
            deduplicate_latest(None)


class TestFilterDeleted:
    """Tests for the active-only variant"""

    def test_deduplicates_before_filtering(self):
        """Test an entity deleted in its latest snapshot is dropped"""
        records = [
            CompanyDim(id="1", name="A", snapshot_month=JAN),
            CompanyDim(id="1", name="A", snapshot_month=FEB, deleted=True),
            CompanyDim(id="2", name="B", snapshot_month=JAN),
        ]

        result = deduplicate_and_filter_deleted(records)

        assert [r.id for r in result] == ["2"]

    def test_reactivated_entity_is_kept(self):
        """Test an entity active again in its latest snapshot survives"""
        records = [
            CompanyDim(id="1", name="A", snapshot_month=JAN, deleted=True),
            CompanyDim(id="1", name="A", snapshot_month=FEB),
        ]

        assert len(deduplicate_and_filter_deleted(records)) == 1


class TestDeduplicateDimensions:
    """Tests for deduplicating a whole snapshot set"""

    def test_companies_active_only_others_keep_deleted(self):
        """Test companies drop deleted entities while brands keep them"""
        dims = DimensionSet(
            companies=[
                CompanyDim(id="1", name="A", snapshot_month=JAN),
                CompanyDim(id="2", name="B", snapshot_month=JAN, deleted=True),
            ],
            brands=[
                BrandDim(id="10", name="X", company_id="1", snapshot_month=JAN),
                BrandDim(id="10", name="X", company_id="1", snapshot_month=FEB, deleted=True),
            ],
            addresses=[
                AddressDim(id="100", name="Calle 1", company_id="1", snapshot_month=JAN, deleted=True),
            ],
            channels=[ChannelDim(id="E22BC362", name="Glovo")],
        )

        result = deduplicate_dimensions(dims)

        assert [c.id for c in result.companies] == ["1"]
        assert len(result.brands) == 1
        assert result.brands[0].deleted is True
        assert result.addresses[0].deleted is True
        assert len(result.channels) == 1

    def test_none_raises(self):
        with pytest.raises(ValueError):
            deduplicate_dimensions(None)


class TestNormalizeAddress:
    """Tests for street normalization"""

    @pytest.mark.parametrize("raw,expected", [
        ("Calle de Mozart 5, 28008 Madrid, Spain", "mozart 5"),
        ("Carrer Mozart 5", "mozart 5"),
        ("C/ Mozart 5", "mozart 5"),
        ("Avinguda de la Diagonal 420", "diagonal 420"),
        ("Plaça d'Espanya 3", "espanya 3"),
        ("Calle Génova 10 28004 Madrid", "genova 10"),
        ("", ""),
    ])
    def test_normalize(self, raw, expected):
        """Test street prefixes, prepositions, accents and suffixes are removed"""
        assert normalize_address(raw) == expected

    def test_address_key_blank_is_none(self):
        """Test blank addresses never produce a group key"""
        assert address_key(AddressDim(id="1", name="  ", company_id="1")) is None


class TestGroupEntities:
    """Tests for multi-platform grouping"""

    def test_case_insensitive_name_merge(self):
        """Test rows sharing a name within a company merge"""
        rows = [
            BrandDim(id="11", name="Burger Loco", company_id="1", snapshot_month=JAN),
            BrandDim(id="9", name="burger loco ", company_id="1", snapshot_month=FEB),
        ]

        result = group_entities(rows)

        assert len(result) == 1
        assert result[0].id == "9"  # most recent snapshot
        assert result[0].all_ids == ("9", "11")  # numeric order

    def test_different_companies_never_merge(self):
        """Test equal names in different companies stay apart"""
        rows = [
            BrandDim(id="10", name="Pizza", company_id="1"),
            BrandDim(id="20", name="Pizza", company_id="2"),
        ]

        assert len(group_entities(rows)) == 2

    def test_ties_keep_first_as_canonical(self):
        rows = [
            AddressDim(id="101", name="Mozart 5", company_id="1", snapshot_month=JAN),
            AddressDim(id="100", name="Mozart 5", company_id="1", snapshot_month=JAN),
        ]

        result = group_entities(rows)

        assert result[0].id == "101"
        assert result[0].all_ids == ("100", "101")

    def test_union_never_drops_ids(self):
        """Test all_ids is the union of every member's all_ids"""
        rows = [
            AddressDim(id="100", name="Mozart 5", company_id="1", all_ids=("100", "300")),
            AddressDim(id="101", name="mozart 5", company_id="1"),
        ]

        result = group_entities(rows)

        assert set(result[0].all_ids) == {"100", "101", "300"}
        assert result[0].id in result[0].all_ids

    def test_deleted_only_if_all_members_deleted(self):
        rows = [
            BrandDim(id="10", name="A", company_id="1", deleted=True),
            BrandDim(id="11", name="A", company_id="1", deleted=False),
            BrandDim(id="12", name="B", company_id="1", deleted=True),
            BrandDim(id="13", name="B", company_id="1", deleted=True),
        ]

        by_name = {r.name: r for r in group_entities(rows)}

        assert by_name["A"].deleted is False
        assert by_name["B"].deleted is True

    def test_singletons_and_blank_names(self):
        """Test unmatched and unnamed rows stay singletons with their own id"""
        rows = [
            AddressDim(id="100", name="", company_id="1"),
            AddressDim(id="101", name="", company_id="1"),
            AddressDim(id="102", name="Unique", company_id="1"),
        ]

        result = group_entities(rows)

        assert [r.all_ids for r in result] == [("100",), ("101",), ("102",)]

    def test_canonical_address_inherits_member_brand(self):
        """Test a merged address keeps a brand when its canonical row has none"""
        rows = [
            AddressDim(id="100", name="Mozart 5", company_id="1", brand_id="10", snapshot_month=JAN),
            AddressDim(id="101", name="Mozart 5", company_id="1", snapshot_month=FEB),
        ]

        result = group_entities(rows)

        assert result[0].id == "101"
        assert result[0].brand_id == "10"

    def test_idempotent(self):
        """Test regrouping a grouped list yields the same groups"""
        rows = [
            AddressDim(id="100", name="Calle de Mozart 5, 28008 Madrid", company_id="1", snapshot_month=JAN),
            AddressDim(id="101", name="C/ Mozart 5", company_id="1", snapshot_month=FEB),
            AddressDim(id="102", name="Gran Via 1", company_id="1"),
        ]

        once = group_entities(rows, key_fn=address_key)

        assert len(once) == 2
        assert group_entities(once, key_fn=address_key) == once

    def test_identity_key(self):
        """Test explicit identifier lists merge rows with unrelated names"""
        rows = [
            AddressDim(id="100", name="Local Centro", company_id="1"),
            AddressDim(id="555", name="Centro (Uber)", company_id="1"),
            AddressDim(id="700", name="Otro", company_id="1"),
        ]

        result = group_entities(rows, key_fn=identity_key({"centro": ["100", "555"]}))

        assert len(result) == 2
        assert result[0].all_ids == ("100", "555")
        assert result[1].all_ids == ("700",)

    def test_name_key_ignores_case_and_whitespace(self):
        assert name_key(BrandDim(id="1", name="  Sushi BAR ", company_id="1")) == "sushi bar"


class TestExpandEntityIds:
    """Tests for selection expansion"""

    @pytest.fixture
    def addresses(self):
        return [
            AddressDim(id="100", name="Mozart 5", company_id="1", all_ids=("100", "101")),
            AddressDim(id="200", name="Gran Via 1", company_id="1"),
        ]

    def test_expands_to_all_platform_ids(self, addresses):
        assert expand_entity_ids(["100"], addresses) == ["100", "101"]

    def test_selection_by_secondary_id(self, addresses):
        """Test selecting a non-canonical id expands to the whole group"""
        assert expand_entity_ids(["101"], addresses) == ["100", "101"]

    def test_unknown_id_is_kept(self, addresses):
        assert expand_entity_ids(["999", "200"], addresses) == ["999", "200"]

    def test_deduplicated_in_insertion_order(self, addresses):
        assert expand_entity_ids(["101", "100", "200"], addresses) == ["100", "101", "200"]

    def test_empty_selection(self, addresses):
        assert expand_entity_ids([], addresses) == []


class TestResolveChannelId:
    """Tests for portal to channel mapping"""

    def test_mapped_portals(self, hierarchy_settings):
        mapping = hierarchy_settings.portal_channel_map

        assert resolve_channel_id("E22BC362", mapping) == "glovo"
        assert resolve_channel_id("E22BC362-2", mapping) == "glovo"
        assert resolve_channel_id("3CCD6861", mapping) == "ubereats"

    def test_channel_ids_map_to_themselves(self):
        assert resolve_channel_id("glovo") == "glovo"
        assert resolve_channel_id("JUSTEAT") == "justeat"

    def test_unknown_portal(self):
        assert resolve_channel_id("ABCDEF") is None
        assert resolve_channel_id("") is None
        assert resolve_channel_id(None) is None


class TestPrepareDimensions:
    """Tests for dedup + grouping"""

    @pytest.fixture
    def raw(self):
        return DimensionSet(
            companies=[CompanyDim(id="1", name="A", snapshot_month=JAN)],
            brands=[
                BrandDim(id="10", name="Burger Loco", company_id="1", snapshot_month=JAN),
                BrandDim(id="10", name="Burger Loco", company_id="1", snapshot_month=FEB),
                BrandDim(id="11", name="BURGER LOCO", company_id="1", snapshot_month=FEB),
            ],
            addresses=[
                AddressDim(id="100", name="Calle de Mozart 5, 28008 Madrid", company_id="1", brand_id="10"),
                AddressDim(id="101", name="C/ Mozart 5", company_id="1", brand_id="11"),
            ],
            channels=[],
        )

    def test_groups_brands_and_addresses(self, raw, hierarchy_settings):
        result = prepare_dimensions(raw, hierarchy_settings)

        assert len(result.brands) == 1
        assert result.brands[0].all_ids == ("10", "11")
        assert len(result.addresses) == 1
        assert result.addresses[0].all_ids == ("100", "101")

    def test_grouping_can_be_disabled(self, raw):
        settings = HierarchySettings(group_addresses=False, group_brands=False)

        result = prepare_dimensions(raw, settings)

        assert len(result.brands) == 2
        assert len(result.addresses) == 2

    def test_name_grouping_without_normalization(self, raw):
        settings = HierarchySettings(normalize_address_names=False)

        result = prepare_dimensions(raw, settings)

        assert len(result.addresses) == 2

    def test_none_raises(self, hierarchy_settings):
        with pytest.raises(ValueError):
            prepare_dimensions(None, hierarchy_settings)
