"""Unit tests for the copy-plan builder, its writer and the URL helpers."""
import tempfile
import threading
from pathlib import Path

import pytest

from metamirror.copyplan.builder import CopyInstruction, build_all_plans, build_plan, plan_instructions
from metamirror.copyplan.writer import manifest_name, script_name, write_copy_plan
from metamirror.core.workflow import Side
from metamirror.translator.history import LocationHistory
from metamirror.translator.utils import append_last_dir, dir_depth, last_dir_from_url, reduce_url_by


class TestUrlHelpers:

    @pytest.mark.parametrize("url,level,expected", [
        ("hdfs://ns/a/b/c", 1, "hdfs://ns/a/b"),
        ("hdfs://ns/a/b/", 1, "hdfs://ns/a"),
        ("hdfs://ns/a", 3, "hdfs://ns"),
        ("hdfs://ns/a/b", 0, "hdfs://ns/a/b"),
        ("/a/b/c", 1, "/a/b"),
    ])
    def test_reduce_url_by(self, url, level, expected):
        assert reduce_url_by(url, level) == expected

    def test_last_dir(self):
        assert last_dir_from_url("hdfs://ns/db/t1") == "t1"
        assert last_dir_from_url("t1") is None

    def test_append_last_dir(self):
        assert append_last_dir("ofs://x/db", "hdfs://a/db/t1") == "ofs://x/db/t1"
        assert append_last_dir("ofs://x/db/", "hdfs://a/db/t1") == "ofs://x/db/"

    def test_dir_depth(self):
        assert dir_depth("dt=1") == 0
        assert dir_depth("dt=1/hr=2") == 1


class TestBuildPlan:
    """Grouping recorded locations into bulk copy instructions."""

    def test_groups_sources_by_parent_target(self):
        history = LocationHistory()
        history.record("db", Side.RIGHT, "ofs://a/db/t1", "ofs://x/db/t1", 1)
        history.record("db", Side.RIGHT, "ofs://a/db/t2", "ofs://x/db/t2", 1)
        plan = build_plan(history, "db", Side.RIGHT, 1)
        assert plan == {"ofs://x/db": {"ofs://a/db/t1", "ofs://a/db/t2"}}

        instructions = plan_instructions(plan)
        assert instructions == [CopyInstruction(target="ofs://x/db",
                                                sources=["ofs://a/db/t1", "ofs://a/db/t2"], manifest=True)]

    def test_single_source_gets_last_dir_appended(self):
        history = LocationHistory()
        history.record("db", Side.RIGHT, "ofs://a/db/t1", "ofs://x/db/t1", 1)
        instructions = plan_instructions(build_plan(history, "db", Side.RIGHT, 1))
        assert len(instructions) == 1
        assert instructions[0].target == "ofs://x/db/t1"
        assert instructions[0].manifest is False

    def test_partitions_collapse_to_table_directory(self):
        history = LocationHistory()
        history.record("db", Side.RIGHT, "hdfs://a/db/t/dt=1", "ofs://x/db/t/dt=1", 2)
        history.record("db", Side.RIGHT, "hdfs://a/db/t/dt=2", "ofs://x/db/t/dt=2", 2)
        plan = build_plan(history, "db", Side.RIGHT, 1)
        assert plan == {"ofs://x/db": {"hdfs://a/db/t"}}
        assert plan_instructions(plan)[0].target == "ofs://x/db/t"

    def test_sides_are_kept_apart(self):
        history = LocationHistory()
        history.record("db", Side.LEFT, "hdfs://a/db/t1", "s3a://hop/db/t1", 1)
        history.record("db", Side.RIGHT, "s3a://hop/db/t1", "ofs://x/db/t1", 1)
        plans = build_all_plans(history)
        assert plans == {
            "db": {
                "LEFT": {"s3a://hop/db": ["hdfs://a/db/t1"]},
                "RIGHT": {"ofs://x/db": ["s3a://hop/db/t1"]},
            }
        }

    def test_empty_history(self):
        assert build_plan(LocationHistory(), "db", Side.RIGHT) == {}
        assert build_all_plans(LocationHistory()) == {}

    def test_concurrent_registration(self):
        history = LocationHistory()

        def register(n):
            for i in range(50):
                history.record("db", Side.RIGHT, f"hdfs://a/db/t{n}_{i}", f"ofs://x/db/t{n}_{i}", 1)

        threads = [threading.Thread(target=register, args=(n,)) for n in range(8)]
        for th in threads:
            th.start()
        for th in threads:
            th.join()
        assert len(history) == 400
        assert len(build_plan(history, "db", Side.RIGHT)["ofs://x/db"]) == 400


class TestWriter:

    def test_names(self):
        assert manifest_name("db", Side.RIGHT, 1) == "db_RIGHT_1_distcp_source.txt"
        assert script_name("db", Side.LEFT) == "db_LEFT_distcp_script.sh"

    def test_writes_manifest_and_script(self):
        instructions = [
            CopyInstruction(target="ofs://x/db", sources=["hdfs://a/db/t1", "hdfs://a/db/t2"], manifest=True),
            CopyInstruction(target="ofs://x/other/t3", sources=["hdfs://a/other/t3"], manifest=False),
        ]
        with tempfile.TemporaryDirectory() as tmp:
            paths = write_copy_plan(tmp, "db", Side.RIGHT, instructions)
            names = sorted(p.name for p in paths)
            assert names == ["db_RIGHT_1_distcp_source.txt", "db_RIGHT_distcp_script.sh"]

            manifest = (Path(tmp) / "db_RIGHT_1_distcp_source.txt").read_text(encoding="utf-8")
            assert manifest.splitlines() == ["hdfs://a/db/t1", "hdfs://a/db/t2"]

            script = (Path(tmp) / "db_RIGHT_distcp_script.sh").read_text(encoding="utf-8")
            assert "HCFS_BASE_DIR" in script
            assert "-f ${HCFS_BASE_DIR}/db_RIGHT_1_distcp_source.txt ofs://x/db" in script
            assert "hadoop distcp ${DISTCP_OPTS} hdfs://a/other/t3 ofs://x/other/t3" in script
