from pathlib import Path

import pytest

from nimbus import cli
from nimbus.state.memory import _records

pytestmark = [pytest.mark.xdist_group("unit")]

CONFIG = """
[clusters.hadoop]
provider = "stub"
state-store = "memory"
instance-templates = "1 namenode, 2 datanode"

[clusters.broken]
provider = "stub"
state-store = "memory"
instance-templates = "1 zookeeper"

[roles.namenode]
configure = "echo configure namenode"

[roles.datanode]
start = "echo start datanode"
depends-on = ["namenode"]
"""


@pytest.fixture
def config_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    (tmp_path / "nimbus.toml").write_text(CONFIG)
    monkeypatch.setattr("nimbus.config.GLOBAL_CONFIG_PATH", tmp_path / "missing.toml")
    return tmp_path


def run(config_dir: Path, *args: str) -> int:
    return cli.main(["--config-dir", str(config_dir), *args])


class TestParser:
    def test_destroy_instance_arguments(self):
        args = cli.build_parser().parse_args(["destroy-instance", "hadoop", "i-123"])
        assert (args.command, args.cluster, args.instance_id) == ("destroy-instance", "hadoop", "i-123")

    def test_run_script_arguments(self):
        args = cli.build_parser().parse_args(["run-script", "--role", "datanode", "hadoop", "df -h"])
        assert (args.role, args.cluster, args.script) == (["datanode"], "hadoop", "df -h")

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])


class TestMain:
    def test_launch_prints_instances_and_saves_state(self, config_dir: Path, capsys):
        assert run(config_dir, "launch-cluster", "hadoop") == 0

        out = capsys.readouterr().out
        assert "stub-1" in out
        assert "namenode" in out
        assert _records["hadoop"].count("\n") == 3

    def test_list_cluster_after_bootstrap(self, config_dir: Path, capsys):
        assert run(config_dir, "bootstrap-cluster", "hadoop") == 0
        capsys.readouterr()

        assert run(config_dir, "list-cluster", "hadoop") == 0
        assert "Cluster hadoop" in capsys.readouterr().out

    def test_list_cluster_without_saved_state_exits_1(self, config_dir: Path, capsys):
        assert run(config_dir, "list-cluster", "hadoop") == 1
        assert "storage" in capsys.readouterr().err

    def test_destroy_cluster(self, config_dir: Path, capsys):
        assert run(config_dir, "bootstrap-cluster", "hadoop") == 0
        assert run(config_dir, "destroy-cluster", "hadoop") == 0
        assert "hadoop" not in _records
        assert "destroyed" in capsys.readouterr().out

    def test_unknown_cluster_exits_1(self, config_dir: Path, capsys):
        assert run(config_dir, "launch-cluster", "hbase") == 1
        assert "not found" in capsys.readouterr().err

    def test_nimbus_error_exits_1(self, config_dir: Path, capsys):
        assert run(config_dir, "launch-cluster", "broken") == 1
        err = capsys.readouterr().err
        assert "configuration" in err
        assert "zookeeper" in err
