"""Tests for template correlation with a stubbed template runner."""
import subprocess
from unittest.mock import patch

import pytest

from core.errors import MalformedRecord, ToolInvocationError
from core.plugins import (
    NucleiRunner,
    PluginCorrelator,
    TemplateRunner,
    build_arguments,
    parse_output,
    parse_record,
)


class StubRunner(TemplateRunner):
    def __init__(self, output="", error=None):
        self.output = output
        self.error = error
        self.calls = []

    def run(self, args):
        self.calls.append(args)
        if self.error:
            raise self.error
        return self.output


@pytest.fixture
def template_root(tmp_path):
    (tmp_path / "nginx").mkdir()
    (tmp_path / "nginx" / "nginx-status.yaml").write_text("id: nginx-status")
    (tmp_path / "WordPress").mkdir()
    (tmp_path / "not-a-dir").write_text("file")
    return tmp_path


def test_build_arguments_order():
    assert build_arguments("http://h", ["/t/a", "/t/b"]) == [
        "-u", "http://h", "-no-color", "-t", "/t/a", "-t", "/t/b", "-silent", "-json",
    ]


def test_parse_record_normalizes_legacy_field():
    assert parse_record('{"template-id": "CVE-2021-1234", "host": "h"}') == "CVE-2021-1234"
    assert parse_record('{"template_id": "nginx-status"}') == "nginx-status"
    with pytest.raises(MalformedRecord):
        parse_record('{"host": "h"}')
    with pytest.raises(MalformedRecord):
        parse_record("[1, 2]")


def test_parse_output_skips_malformed_lines():
    output = "\n".join([
        '{"template_id": "first"}',
        "{not json",
        "",
        '{"template-id": "second"}',
    ])
    assert parse_output(output) == {"first", "second"}


@pytest.mark.asyncio
async def test_no_template_dirs_means_no_invocation(template_root):
    runner = StubRunner(output='{"template_id": "x"}')
    correlator = PluginCorrelator(str(template_root), runner)

    plugins = await correlator.correlate("http://h", {"drupal", "not-a-dir"})

    assert plugins == set()
    assert runner.calls == []


@pytest.mark.asyncio
async def test_correlate_runs_tool_once_with_existing_dirs(template_root):
    runner = StubRunner(output='{"template_id": "nginx-status"}\n{"template-id": "wp-login"}\n')
    correlator = PluginCorrelator(str(template_root), runner)

    plugins = await correlator.correlate("http://h", {"nginx", "WordPress", "drupal"})

    assert plugins == {"nginx-status", "wp-login"}
    assert len(runner.calls) == 1
    args = runner.calls[0]
    assert args[:3] == ["-u", "http://h", "-no-color"]
    assert args.count("-t") == 2
    assert str(template_root / "nginx") in args
    assert str(template_root / "WordPress") in args


@pytest.mark.asyncio
async def test_names_escaping_template_root_are_ignored(tmp_path):
    root = tmp_path / "templates"
    root.mkdir()
    (tmp_path / "outside").mkdir()
    (tmp_path / "outside" / "evil.yaml").write_text("id: evil")
    runner = StubRunner(output='{"template_id": "evil"}')
    correlator = PluginCorrelator(str(root), runner)

    names = {"../outside", str(tmp_path / "outside"), "..", "."}
    assert correlator.find_template_dirs(names) == []
    assert await correlator.correlate("http://h", names) == set()
    assert runner.calls == []


@pytest.mark.asyncio
async def test_tool_failure_yields_empty_set(template_root):
    runner = StubRunner(error=ToolInvocationError("nuclei not found"))
    correlator = PluginCorrelator(str(template_root), runner)

    assert await correlator.correlate("http://h", {"nginx"}) == set()
    assert len(runner.calls) == 1


def test_nuclei_runner_missing_executable():
    runner = NucleiRunner(tool="definitely-not-installed-tool")
    with patch("core.plugins.subprocess.run", side_effect=FileNotFoundError()):
        with pytest.raises(ToolInvocationError):
            runner.run(["-u", "http://h"])


def test_nuclei_runner_returns_stdout():
    completed = subprocess.CompletedProcess(args=[], returncode=0, stdout='{"template_id": "a"}\n', stderr="")
    with patch("core.plugins.subprocess.run", return_value=completed) as mock_run:
        output = NucleiRunner(tool="nuclei", timeout=30).run(["-u", "http://h"])

    assert output == '{"template_id": "a"}\n'
    assert mock_run.call_args.args[0] == ["nuclei", "-u", "http://h"]
    assert mock_run.call_args.kwargs["timeout"] == 30
