"""Tests for the SHOW CREATE TABLE helpers."""
from fakes import table_ddl, view_ddl
from metamirror.services import ddl


def test_location_helpers():
    definition = table_ddl("t", location="hdfs://left/db/t", external=True)
    assert ddl.get_location(definition) == "hdfs://left/db/t"

    assert ddl.update_location(definition, "ofs://x/db/t") is True
    assert ddl.get_location(definition) == "ofs://x/db/t"

    ddl.remove_location(definition)
    assert ddl.get_location(definition) is None
    assert ddl.update_location(definition, "ofs://x/db/t") is False


def test_set_location_inserts_before_tblproperties():
    definition = table_ddl("t", props={"a": "b"})
    ddl.set_location(definition, "s3a://hop/t")
    idx = definition.index("LOCATION")
    assert definition[idx + 1] == "  's3a://hop/t'"
    assert definition[idx + 2].startswith("TBLPROPERTIES")


def test_table_kinds():
    managed = table_ddl("t", acid=True)
    external = table_ddl("t", external=True)
    view = view_ddl("v")
    assert ddl.is_acid(managed) and ddl.is_managed(managed)
    assert ddl.is_external(external) and not ddl.is_acid(external)
    assert ddl.is_view(view) and not ddl.is_managed(view)
    assert ddl.is_hive_native(external)


def test_make_external_drops_transactional_properties():
    definition = table_ddl("t", acid=True, props={"bucketing_version": "2"})
    ddl.make_external(definition)
    assert ddl.is_external(definition)
    props = ddl.tbl_properties(definition)
    assert "transactional" not in props
    assert "bucketing_version" not in props
    assert props[ddl.EXTERNAL_PURGE] == "true"


def test_make_external_without_purge():
    definition = table_ddl("t")
    ddl.make_external(definition, purge=False)
    assert ddl.get_tbl_property(definition, ddl.EXTERNAL_PURGE) is None


def test_tbl_property_upsert_and_remove():
    definition = table_ddl("t", external=True)
    ddl.upsert_tbl_property(definition, "k1", "v1")
    ddl.upsert_tbl_property(definition, "k2", "v2")
    assert ddl.tbl_properties(definition) == {"k1": "v1", "k2": "v2"}
    ddl.remove_tbl_property(definition, "k1")
    assert ddl.tbl_properties(definition) == {"k2": "v2"}
    assert definition[-1] == "  'k2'='v2')"


def test_partition_columns_and_spec():
    definition = table_ddl("t", partitioned_by=["dt", "hr"])
    assert ddl.is_partitioned(definition)
    assert ddl.partition_columns(definition) == ["dt", "hr"]
    assert ddl.partition_spec_to_sql("dt=2020-01-01/hr=1") == "dt='2020-01-01', hr='1'"


def test_table_name_rewrite():
    definition = table_ddl("orders")
    assert ddl.table_name(definition) == "orders"
    ddl.change_table_name(definition, "hms_mirror_shadow_orders")
    assert ddl.table_name(definition) == "hms_mirror_shadow_orders"


def test_file_format():
    assert ddl.file_format(table_ddl("t")) == "ORC"
