"""
tests/test_cli.py

End-to-end CLI behaviour through click's CliRunner.

    new-account -> add -> decrypt round-trips a file
    signature exits 0 on a valid tag
    delegate hands the file to another account
    harvest over a bounded range reports and exits 0
    Exit codes: 1 protocol failure, 2 usage / config error
"""

import json

import pytest
from click.testing import CliRunner

from fileforce.cli import cli

PASS = "correct horse"


@pytest.fixture
def runner(tmp_path, monkeypatch):
    for name in ("FILEFORCE_CONFIG", "FILEFORCE_PASSPHRASE", "FILEFORCE_ACCOUNT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("FILEFORCE_HOME", str(tmp_path / "home"))
    return CliRunner()


def invoke(runner, *args):
    return runner.invoke(cli, ["--no-color", *args])


def new_account(runner):
    result = invoke(runner, "new-account", "--kdf", "pbkdf2", "--work", "1000", "--passphrase", PASS)
    assert result.exit_code == 0, result.output
    lines = result.output.splitlines()
    address = lines[0]
    public_key = lines[1].split()[-1]
    return address, public_key


def arrow_value(output, label):
    for line in output.splitlines():
        if line.startswith(label):
            return line.split()[-1]
    raise AssertionError(f"{label!r} not in output: {output}")


@pytest.fixture
def shared(runner, tmp_path):
    """alice adds a file for bob."""
    alice, alice_pub = new_account(runner)
    bob, bob_pub = new_account(runner)

    source = tmp_path / "report.txt"
    source.write_bytes(b"quarterly numbers\n" * 1000)

    result = invoke(runner, "add", str(source), "--account", alice, "--to", bob_pub, "--passphrase", PASS)
    assert result.exit_code == 0, result.output
    return {
        "alice":     alice,
        "alice_pub": alice_pub,
        "bob":       bob,
        "source":    source,
        "file_id":   arrow_value(result.output, "File"),
        "tag_id":    arrow_value(result.output, "Tag"),
    }


class TestAccounts:

    def test_new_account(self, runner):
        address, public_key = new_account(runner)
        assert address.startswith("0x") and len(address) == 42
        assert len(bytes.fromhex(public_key)) == 65

    def test_add_without_keystore(self, runner, tmp_path):
        source = tmp_path / "a.txt"
        source.write_text("x")
        result = invoke(runner, "add", str(source), "--passphrase", PASS)
        assert result.exit_code == 2

    def test_add_needs_account_when_ambiguous(self, runner, tmp_path):
        new_account(runner)
        new_account(runner)
        source = tmp_path / "a.txt"
        source.write_text("x")
        result = invoke(runner, "add", str(source), "--passphrase", PASS)
        assert result.exit_code == 2


class TestTags:

    def test_self_add_and_decrypt(self, runner, tmp_path):
        new_account(runner)
        source = tmp_path / "note.txt"
        source.write_bytes(b"just for me")

        added = invoke(runner, "add", str(source), "--passphrase", PASS)
        assert added.exit_code == 0, added.output

        out = tmp_path / "note.out"
        result = invoke(runner, "decrypt", arrow_value(added.output, "Tag"), "-o", str(out), "--passphrase", PASS)
        assert result.exit_code == 0, result.output
        assert out.read_bytes() == b"just for me"

    def test_decrypt_to_file(self, runner, shared, tmp_path):
        out = tmp_path / "out.txt"
        result = invoke(runner, "decrypt", shared["tag_id"], "-o", str(out), "--passphrase", PASS)
        assert result.exit_code == 0, result.output
        assert out.read_bytes() == shared["source"].read_bytes()

    def test_wrong_passphrase(self, runner, shared, tmp_path):
        result = invoke(runner, "decrypt", shared["tag_id"], "-o", str(tmp_path / "x"), "--passphrase", "nope")
        assert result.exit_code == 1
        assert "InvalidPassphrase" in result.output

    def test_tag_json(self, runner, shared):
        result = invoke(runner, "tag", shared["tag_id"])
        assert result.exit_code == 0, result.output
        wire = json.loads(result.output)
        assert wire["ownerAddress"] == shared["alice"]
        assert wire["destAddress"] == shared["bob"]
        assert wire["contentIdentifier"] == shared["file_id"]

    def test_signature_valid(self, runner, shared):
        result = invoke(runner, "signature", shared["tag_id"])
        assert result.exit_code == 0, result.output
        assert "SIGNATURE VALID" in result.output
        assert shared["alice"] in result.output

    def test_delegate(self, runner, shared, tmp_path):
        result = invoke(runner, "delegate", shared["tag_id"], shared["alice_pub"], "--passphrase", PASS)
        assert result.exit_code == 0, result.output
        assert "delegated to " + shared["alice"] in result.output

        new_tag = result.output.split("with new tag ")[1].split()[0]
        out = tmp_path / "back.txt"
        decrypted = invoke(runner, "decrypt", new_tag, "-o", str(out), "--passphrase", PASS)
        assert decrypted.exit_code == 0, decrypted.output
        assert out.read_bytes() == shared["source"].read_bytes()

    def test_invalid_public_key(self, runner, shared):
        result = invoke(runner, "delegate", shared["tag_id"], "zz", "--passphrase", PASS)
        assert result.exit_code == 2


class TestEvents:

    def test_watch_bounded(self, runner, shared):
        result = invoke(runner, "watch", "--kind", "file", "--from-block", "0", "--to-block", "2")
        assert result.exit_code == 0, result.output
        assert shared["file_id"] in result.output

    def test_harvest_bounded(self, runner, shared):
        result = invoke(
            runner, "harvest", "--kind", "tag", "--from-block", "0", "--to-block", "2",
        )
        assert result.exit_code == 0, result.output
        assert "1 event(s), 1/1 pulled, 0 error(s)" in result.output

    def test_harvest_json(self, runner, shared):
        result = invoke(
            runner, "harvest", "--kind", "file", "--from-block", "0", "--to-block", "2",
            "--format", "json",
        )
        assert result.exit_code == 0, result.output
        report = json.loads(result.output[result.output.index("{"):])
        assert report["events"] == 1
        assert report["errors"] == []

    def test_bad_range(self, runner):
        result = invoke(runner, "harvest", "--from-block", "5", "--to-block", "1")
        assert result.exit_code == 2

    @pytest.mark.parametrize("command", ["watch", "harvest"])
    def test_to_block_below_default_start(self, runner, shared, tmp_path, command):
        # latest block is 2; with no offset the default start is 2
        (tmp_path / "home" / "config.yaml").write_text("event_offset: 0\n")
        result = invoke(runner, command, "--to-block", "1")
        assert result.exit_code == 2, result.output
        assert "--to-block 1 is below the start block 2" in result.output

    def test_pull_local(self, runner, shared):
        result = invoke(runner, "pull", shared["tag_id"])
        assert result.exit_code == 0, result.output
        assert "already local" in result.output

    def test_pull_unavailable(self, runner):
        result = invoke(runner, "pull", "ab" * 32)
        assert result.exit_code == 1
        assert "UnavailableContent" in result.output


class TestConfig:

    def test_bad_config_exits_2(self, runner, tmp_path):
        config = tmp_path / "bad.yaml"
        config.write_text("colour: blue\n")
        result = runner.invoke(cli, ["--config", str(config), "pull", "ab" * 32])
        assert result.exit_code == 2
        assert "ConfigError" in result.output

    def test_mirror_pull(self, runner, shared, tmp_path):
        home = tmp_path / "home"
        config = tmp_path / "peer.yaml"
        config.write_text(
            f"home: {tmp_path / 'peer-home'}\n"
            f"mirrors:\n  origin: {home / 'store'}\n"
        )
        result = runner.invoke(cli, ["--config", str(config), "pull", shared["tag_id"]])
        assert result.exit_code == 0, result.output
        assert "Pulled" in result.output
        assert "origin" in result.output
