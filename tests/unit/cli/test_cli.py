"""Tests for the planrunner command line interface."""

import json

import httpx
import pytest
from click.testing import CliRunner

from planrunner.cli import main as cli_main
from planrunner.cli.main import cli, iter_sse_events


@pytest.fixture
def runner():
    return CliRunner()


def write_plan(tmp_path, steps, plan_id="plan-1"):
    path = tmp_path / "plan.json"
    path.write_text(json.dumps({"id": plan_id, "goal": "Demo", "steps": steps}))
    return str(path)


class TestRunCommand:

    def test_runs_all_steps(self, runner, tmp_path):
        plan_file = write_plan(tmp_path, [
            {"id": "s1", "description": "First", "action": "noop"},
            {"id": "s2", "description": "Second", "action": "delay", "params": {"seconds": 0}},
        ])

        result = runner.invoke(cli, ["run", plan_file])

        assert result.exit_code == 0, result.output
        assert "Successfully completed 2 steps" in result.output

    def test_step_mode_runs_to_completion(self, runner, tmp_path):
        plan_file = write_plan(tmp_path, [
            {"id": "s1", "description": "First", "action": "noop"},
            {"id": "s2", "description": "Second", "action": "noop"},
        ])

        result = runner.invoke(cli, ["run", plan_file, "--mode", "step"])

        assert result.exit_code == 0, result.output
        assert "Step mode" in result.output
        assert "Successfully completed 2 steps" in result.output

    def test_failed_plan_exits_non_zero(self, runner, tmp_path):
        plan_file = write_plan(tmp_path, [
            {"id": "s1", "description": "First", "action": "noop"},
            {"id": "s2", "description": "Second", "action": "launchRocket"},
        ])

        result = runner.invoke(cli, ["run", plan_file])

        assert result.exit_code == 1
        assert "No handler registered for action: launchRocket" in result.output

    def test_invalid_plan_file(self, runner, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")

        result = runner.invoke(cli, ["run", str(path)])

        assert result.exit_code != 0
        assert "Invalid plan file" in result.output

    def test_reserved_plan_id(self, runner, tmp_path):
        plan_file = write_plan(tmp_path, [], plan_id="__proto__")

        result = runner.invoke(cli, ["run", plan_file])

        assert result.exit_code != 0
        assert "Invalid planId" in result.output


class TestRemoteCommands:

    def test_cancel(self, runner, monkeypatch):
        calls = []

        def fake_post(url, json=None, headers=None):
            calls.append((url, json, headers))
            return httpx.Response(200, json={"success": True, "message": "Plan execution cancelled."})

        monkeypatch.setattr(cli_main.httpx, "post", fake_post)

        result = runner.invoke(cli, ["cancel", "plan-1", "thread-1", "--url", "http://api", "--token", "t"])

        assert result.exit_code == 0, result.output
        assert "Plan execution cancelled." in result.output
        url, body, headers = calls[0]
        assert url == "http://api/api/ai/agent/plan/cancel"
        assert body == {"planId": "plan-1", "threadId": "thread-1"}
        assert headers == {"Authorization": "Bearer t"}

    def test_cancel_error_status(self, runner, monkeypatch):
        monkeypatch.setattr(
            cli_main.httpx,
            "post",
            lambda url, json=None, headers=None: httpx.Response(400, json={"detail": "Invalid planId"}),
        )

        result = runner.invoke(cli, ["cancel", "constructor", "thread-1"])

        assert result.exit_code != 0
        assert "400: Invalid planId" in result.output


def test_iter_sse_events():
    lines = [
        'data: {"type": "plan-approved", "planId": "p"}',
        "",
        ": keep-alive",
        'data: {"type": "error", "error": "x"}',
    ]
    assert [e["type"] for e in iter_sse_events(iter(lines))] == ["plan-approved", "error"]
