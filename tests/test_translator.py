"""Unit tests for LocationTranslator."""
import pytest

from fakes import make_config, table_ddl
from metamirror.core.errors import MappingRequiredError, TranslationError
from metamirror.core.messages import CodeRegistry, MessageCode
from metamirror.core.workflow import Side, StrategyKind
from metamirror.records.models import DB_LOCATION, NOT_SET, DatabaseRecord, TableRecord
from metamirror.translator.history import LocationHistory
from metamirror.translator.translator import LocationTranslator


def _translator(**overrides):
    config = make_config(**overrides)
    return LocationTranslator(config, LocationHistory(), CodeRegistry())


class TestTranslate:
    """Table level translation."""

    def test_namespace_replacement(self):
        t = _translator()
        result = t.translate("db", "tbl", "hdfs://left/db/tbl", 1)
        assert result.location == "ofs://OHOME90/db/tbl", f"unexpected location {result.location}"
        assert result.remapped is False

    def test_trailing_slash_on_namespace_is_normalised(self):
        t = _translator(left={"namespace": "hdfs://left/"}, right={"namespace": "ofs://OHOME90/"})
        result = t.translate("db", "tbl", "hdfs://left/db/tbl", 1)
        assert result.location == "ofs://OHOME90/db/tbl"

    def test_first_matching_prefix_wins(self):
        t = _translator(global_location_map={"/warehouse": "/a", "/warehouse/tablespace": "/b"})
        result = t.translate("db", "x", "hdfs://left/warehouse/tablespace/x", 1)
        assert result.location == "ofs://OHOME90/a/tablespace/x"
        assert result.remapped is True

    def test_map_order_changes_result(self):
        t = _translator(global_location_map={"/warehouse/tablespace": "/b", "/warehouse": "/a"})
        result = t.translate("db", "x", "hdfs://left/warehouse/tablespace/x", 1)
        assert result.location == "ofs://OHOME90/b/x"

    @pytest.mark.parametrize("strategy", [StrategyKind.LINKED, StrategyKind.COMMON])
    def test_shared_storage_strategies_keep_location(self, strategy):
        t = _translator(strategy=strategy.value)
        result = t.translate("db", "tbl", "hdfs://left/db/tbl", 1)
        assert result.location == "hdfs://left/db/tbl"

    def test_deterministic(self):
        t = _translator(global_location_map={"/data": "/landing"})
        first = t.translate("db", "t", "hdfs://left/data/db/t", 1)
        second = t.translate("db", "t", "hdfs://left/data/db/t", 1)
        assert first == second

    def test_namespace_mismatch_raises(self):
        t = _translator()
        with pytest.raises(TranslationError):
            t.translate("db", "tbl", "s3a://elsewhere/db/tbl", 1)

    def test_missing_target_namespace_raises(self):
        t = _translator(right={})
        with pytest.raises(TranslationError):
            t.translate("db", "tbl", "hdfs://left/db/tbl", 1)

    def test_storage_migration_without_mapping_requires_one(self):
        codes = CodeRegistry()
        config = make_config(strategy="STORAGE_MIGRATION", right={})
        t = LocationTranslator(config, LocationHistory(), codes)
        with pytest.raises(MappingRequiredError):
            t.translate("db", "tbl", "hdfs://left/db/tbl", 1)
        assert codes.has_error(MessageCode.STORAGE_MIGRATION_NAMESPACE)

    def test_storage_migration_with_mapping(self):
        t = _translator(strategy="STORAGE_MIGRATION", right={},
                        global_location_map={"/apps/hive/warehouse": "/warehouse/external"})
        result = t.translate("db", "tbl", "hdfs://left/apps/hive/warehouse/db.db/tbl", 1)
        assert result.location == "hdfs://left/warehouse/external/db.db/tbl"

    def test_reset_to_default_location(self):
        t = _translator(reset_to_default_location=True, db_prefix="new_",
                        transfer={"warehouse": {"external_directory": "/warehouse/external"}})
        result = t.translate("db", "tbl", "hdfs://left/data/db/tbl", 1)
        assert result.location == "ofs://OHOME90/warehouse/external/new_db.db/tbl"
        part = t.translate("db", "tbl", "hdfs://left/data/db/tbl/dt=1", 2, "dt=1")
        assert part.location == "ofs://OHOME90/warehouse/external/new_db.db/tbl/dt=1"

    def test_common_storage_is_target(self):
        t = _translator(transfer={"common_storage": "s3a://shared/"})
        result = t.translate("db", "tbl", "hdfs://left/db/tbl", 1)
        assert result.location == "s3a://shared/db/tbl"


class TestHistory:
    """Registration of translated locations."""

    def test_records_on_right_for_pull(self):
        t = _translator(transfer={"storage_migration": {"distcp": True}})
        t.translate("db1", "tbl", "hdfs://left/db1/tbl", 1)
        entries = t.history.entries("db1", Side.RIGHT)
        assert len(entries) == 1, "expected one RIGHT entry"
        assert entries[0].target == "ofs://OHOME90/db1/tbl"

    def test_records_on_left_for_push(self):
        t = _translator(transfer={"storage_migration": {"distcp": True, "data_flow": "PUSH"}})
        t.translate("db1", "tbl", "hdfs://left/db1/tbl", 1)
        assert t.history.entries("db1", Side.LEFT)
        assert not t.history.entries("db1", Side.RIGHT)

    def test_history_keyed_by_resolved_database(self):
        t = _translator(db_prefix="new_", transfer={"storage_migration": {"distcp": True}})
        t.translate("db1", "tbl", "hdfs://left/db1/tbl", 1)
        assert t.history.keys() == [("new_db1", Side.RIGHT)]

    def test_nothing_recorded_without_bulk_copy(self):
        t = _translator()
        t.translate("db1", "tbl", "hdfs://left/db1/tbl", 1)
        assert len(t.history) == 0

    def test_sql_strategy_does_not_record(self):
        t = _translator(strategy="SQL", transfer={"storage_migration": {"distcp": True}})
        t.translate("db1", "tbl", "hdfs://left/db1/tbl", 1)
        assert len(t.history) == 0

    def test_last_registration_wins(self):
        t = _translator(transfer={"storage_migration": {"distcp": True}})
        t.record_location("db1", Side.RIGHT, "hdfs://left/db1/t", "ofs://x/one", 1)
        t.record_location("db1", Side.RIGHT, "hdfs://left/db1/t", "ofs://x/two", 1)
        entries = t.history.entries("db1", Side.RIGHT)
        assert [e.target for e in entries] == ["ofs://x/two"]


class TestTableAndPartitions:
    """Translation written back into table records."""

    def _table(self, definition, partitions=None):
        db = DatabaseRecord(name="db1")
        table = db.add_table(TableRecord(name="t", db_name="db1"))
        table.env(Side.LEFT).definition = definition
        table.env(Side.RIGHT).definition = list(definition)
        if partitions is not None:
            table.env(Side.LEFT).partitions = dict(partitions)
        return db, table

    def test_table_location_updates_right_definition(self):
        t = _translator(global_location_map={"/data": "/landing"})
        _, table = self._table(table_ddl("t", location="hdfs://left/data/db1/t", external=True))
        location = t.translate_table_location(table)
        assert location == "ofs://OHOME90/landing/db1/t"
        assert table.remapped is True
        assert "  'ofs://OHOME90/landing/db1/t'" in table.env(Side.RIGHT).definition

    def test_partitions_without_location_are_flagged(self):
        t = _translator(evaluate_partition_location=True)
        db, table = self._table(
            table_ddl("t", location="hdfs://left/db1/t", external=True, partitioned_by=["dt"]),
            {"dt=1": "hdfs://left/db1/t/dt=1", "dt=2": NOT_SET},
        )
        ok = t.translate_partition_locations(db, table)
        right = table.env(Side.RIGHT)
        assert ok is False, "a NOT_SET partition must fail the translation"
        assert right.partitions["dt=1"] == "ofs://OHOME90/db1/t/dt=1"
        assert right.partitions["dt=2"] == NOT_SET
        assert any("dt=2" in issue for issue in right.issues)

    def test_partitions_always_start_from_left(self):
        t = _translator(evaluate_partition_location=True)
        db, table = self._table(
            table_ddl("t", location="hdfs://left/db1/t", external=True, partitioned_by=["dt"]),
            {"dt=1": "hdfs://left/db1/t/dt=1"},
        )
        # Left over from an earlier attempt.
        table.env(Side.RIGHT).partitions = {"dt=1": "ofs://OHOME90/db1/t/dt=1"}

        assert t.translate_partition_locations(db, table) is True
        assert table.env(Side.RIGHT).partitions == {"dt=1": "ofs://OHOME90/db1/t/dt=1"}

    def test_partition_level_lifts_history_to_table_dir(self):
        t = _translator(evaluate_partition_location=True, transfer={"storage_migration": {"distcp": True}})
        db, table = self._table(
            table_ddl("t", location="hdfs://left/db1/t", external=True, partitioned_by=["dt"]),
            {"dt=1": "hdfs://left/db1/t/dt=1"},
        )
        assert t.translate_partition_locations(db, table) is True
        entry = t.history.entries("db1", Side.RIGHT)[0]
        assert entry.level == 2
        assert entry.adjusted_original == "hdfs://left/db1/t"
        assert entry.adjusted_target == "ofs://OHOME90/db1/t"

    def test_partition_outside_warehouse_is_an_issue(self):
        codes = CodeRegistry()
        config = make_config(
            evaluate_partition_location=True,
            transfer={"warehouse": {"external_directory": "/warehouse/external",
                                    "managed_directory": "/warehouse/managed"}},
        )
        t = LocationTranslator(config, LocationHistory(), codes)
        db, table = self._table(
            table_ddl("t", location="hdfs://left/data/t", external=True, partitioned_by=["dt"]),
            {"dt=1": "hdfs://left/data/t/dt=1"},
        )
        db.set_definition(Side.RIGHT, {DB_LOCATION: "ofs://OHOME90/warehouse/external/db1.db"})
        assert t.translate_partition_locations(db, table) is True
        assert codes.warnings == [MessageCode.LOCATION_NOT_MATCH_WAREHOUSE]
        assert table.env(Side.RIGHT).issues, "expected a warehouse mismatch issue"

    def test_reset_without_mapping_warns_per_partition(self):
        codes = CodeRegistry()
        config = make_config(
            evaluate_partition_location=True, reset_to_default_location=True,
            transfer={"warehouse": {"external_directory": "/warehouse/external"}},
        )
        t = LocationTranslator(config, LocationHistory(), codes)
        db, table = self._table(
            table_ddl("t", location="hdfs://left/data/t", external=True, partitioned_by=["dt"]),
            {"dt=1": "hdfs://left/data/t/dt=1"},
        )
        assert t.translate_partition_locations(db, table) is False, "an unmapped partition counts as untranslated"
        assert table.env(Side.RIGHT).partitions["dt=1"] == "ofs://OHOME90/warehouse/external/db1.db/t/dt=1"
        assert MessageCode.RDL_W_EPL_NO_MAPPING in codes.warnings

    def test_other_strategies_leave_partitions_alone(self):
        t = _translator(strategy="SQL", evaluate_partition_location=True)
        db, table = self._table(
            table_ddl("t", location="hdfs://left/db1/t", partitioned_by=["dt"]),
            {"dt=1": NOT_SET},
        )
        assert t.translate_partition_locations(db, table) is True
        assert table.env(Side.RIGHT).partitions == {}
