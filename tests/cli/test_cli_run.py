import os
from click.testing import CliRunner
from remex.cli.cli import cli

def make_exec_root(tmp_path) -> str:
    exec_root = os.path.join(str(tmp_path), "root")
    os.makedirs(os.path.join(exec_root, "src"))
    with open(os.path.join(exec_root, "src", "a.txt"), "w") as f:
        f.write("from a")
    return exec_root

def test_run_local(tmp_path):
    exec_root = make_exec_root(tmp_path)
    runner = CliRunner()
    result = runner.invoke(cli, [
        "run", "--exec-root", exec_root,
        "-i", "src/a.txt", "-o", "out/copy.txt",
        "--env", "GREETING=hi",
        "--", "/bin/sh", "-c", "cp src/a.txt out/copy.txt; echo $GREETING"])
    assert result.exit_code == 0, result.output
    assert "hi" in result.stdout
    with open(os.path.join(exec_root, "out", "copy.txt")) as f:
        assert f.read() == "from a"

def test_run_exits_with_action_exit_code(tmp_path):
    exec_root = make_exec_root(tmp_path)
    runner = CliRunner()
    result = runner.invoke(cli, ["run", "--exec-root", exec_root, "--", "/bin/sh", "-c", "exit 3"])
    assert result.exit_code == 3

def test_run_with_unreachable_cache(tmp_path):
    exec_root = make_exec_root(tmp_path)
    runner = CliRunner()
    result = runner.invoke(cli, [
        "run", "--exec-root", exec_root,
        "--remote-rest-cache", "http://localhost:1/hazelcast/rest/maps",
        "-i", "src/a.txt", "-o", "b.txt",
        "--", "/bin/sh", "-c", "cat src/a.txt > b.txt"])
    assert result.exit_code == 0, result.output
    with open(os.path.join(exec_root, "b.txt")) as f:
        assert f.read() == "from a"

def test_run_failed_action(tmp_path):
    exec_root = make_exec_root(tmp_path)
    runner = CliRunner()
    result = runner.invoke(cli, ["run", "--exec-root", exec_root, "-o", "never.txt", "--", "/bin/sh", "-c", "true"])
    assert result.exit_code == 1
    assert "/bin/sh" in result.output

def test_run_bad_env(tmp_path):
    exec_root = make_exec_root(tmp_path)
    runner = CliRunner()
    result = runner.invoke(cli, ["run", "--exec-root", exec_root, "--env", "NOVALUE", "--", "true"])
    assert result.exit_code == 2

def test_run_missing_exec_root(tmp_path):
    runner = CliRunner()
    result = runner.invoke(cli, ["run", "--exec-root", os.path.join(str(tmp_path), "nope"), "--", "true"])
    assert result.exit_code == 1
