"""CLI contract tests: exit codes, overrides and report artifacts."""

from __future__ import annotations

import json
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
import yaml
from typer.testing import CliRunner

from changegate.cli import OVERRIDE_ENV_VAR, cli

SECURITY_SCRIPT = (
    "import json, sys; diff = sys.stdin.read(); "
    "print(json.dumps([{'line': 1, 'severity': 'critical', 'category': 'secrets', "
    "'message': 'hard-coded credential'}] if 'password' in diff else []))"
)


def _write_config(repo: Path, **overrides: Any) -> Path:
    document: dict[str, Any] = {
        "mode": "hybrid",
        "critical_paths": [
            {
                "pattern": "**/auth/**",
                "label": "Authentication",
                "analyses": ["security"],
                "block_without_review": True,
            }
        ],
        "analyses": {"registry": {"security": {"command": [sys.executable, "-c", SECURITY_SCRIPT]}}},
        "hooks": {"pre_push": {"enabled": True, "allow_override": True}},
    }
    document.update(overrides)
    path = repo / ".github" / "codereview-config.yml"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(document, sort_keys=True), encoding="utf-8")
    return path


def _add_secret(repo: Path) -> None:
    (repo / "src" / "auth").mkdir(parents=True)
    (repo / "src" / "auth" / "login.ts").write_text("const password = 'hunter2';\n", encoding="utf-8")


def _invoke(*args: str, stdin: str | None = None):
    return CliRunner().invoke(cli, list(args), input=stdin)


def _push_new_branch(tmp_path: Path, repo: Path, git: Callable[..., str]) -> str:
    """Publish main to a bare remote, then commit the secret on an unpushed branch."""
    remote = tmp_path / "origin.git"
    git(tmp_path, "init", "-q", "--bare", str(remote))
    git(repo, "remote", "add", "origin", str(remote))
    git(repo, "push", "-q", "-u", "origin", "main")
    git(repo, "checkout", "-q", "-b", "feature")
    _add_secret(repo)
    git(repo, "add", "src")
    git(repo, "commit", "-q", "-m", "login")
    return git(repo, "rev-parse", "HEAD")


def _ref_line(head: str, remote_sha: str = "0" * 40) -> str:
    return f"refs/heads/feature {head} refs/heads/feature {remote_sha}\n"


def test_check_blocks_with_exit_code_2_and_writes_reports(git_repo: Path) -> None:
    _write_config(git_repo)
    _add_secret(git_repo)

    result = _invoke("check", "--repo-root", str(git_repo))

    assert result.exit_code == 2, result.output
    assert "BLOCK" in result.output
    payload = json.loads((git_repo / ".changegate" / "out" / "GATE_REPORT.json").read_text(encoding="utf-8"))
    assert payload["decision"]["outcome"] == "BLOCK"
    assert payload["decision"]["triggering"][0]["path"] == "src/auth/login.ts"
    assert (git_repo / ".changegate" / "out" / "GATE_REPORT.md").exists()


def test_check_allows_clean_changes(git_repo: Path) -> None:
    _write_config(git_repo)
    (git_repo / "src").mkdir()
    (git_repo / "src" / "util.py").write_text("password_hint = None\n", encoding="utf-8")

    result = _invoke("check", "--repo-root", str(git_repo))

    assert result.exit_code == 0, result.output
    assert "ALLOW" in result.output


def test_second_run_reuses_cache(git_repo: Path) -> None:
    _write_config(git_repo)
    _add_secret(git_repo)
    out_dir = git_repo / ".changegate" / "out"

    _invoke("check", "--repo-root", str(git_repo))
    first = (out_dir / "GATE_REPORT.json").read_text(encoding="utf-8")
    _invoke("check", "--repo-root", str(git_repo))
    second = json.loads((out_dir / "GATE_REPORT.json").read_text(encoding="utf-8"))

    assert second["dispatched"] == []
    assert second["cache_hits"] == ["src/auth/login.ts"]
    assert second["decision"] == json.loads(first)["decision"]


def test_override_flag_exits_zero_but_records_block(git_repo: Path) -> None:
    _write_config(git_repo)
    _add_secret(git_repo)

    result = _invoke("check", "--repo-root", str(git_repo), "--override")

    assert result.exit_code == 0, result.output
    assert "Override accepted" in result.output
    payload = json.loads((git_repo / ".changegate" / "out" / "GATE_REPORT.json").read_text(encoding="utf-8"))
    assert payload["decision"]["outcome"] == "BLOCK"


def test_override_env_var(git_repo: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _write_config(git_repo)
    _add_secret(git_repo)
    monkeypatch.setenv(OVERRIDE_ENV_VAR, "1")

    assert _invoke("check", "--repo-root", str(git_repo)).exit_code == 0


def test_override_refused_when_configuration_forbids_it(git_repo: Path) -> None:
    _write_config(git_repo, hooks={"pre_push": {"enabled": True, "allow_override": False}})
    _add_secret(git_repo)

    result = _invoke("check", "--repo-root", str(git_repo), "--override")

    assert result.exit_code == 2
    assert "not permitted" in result.output


def test_disabled_pre_push_hook_skips_analysis(git_repo: Path) -> None:
    _write_config(git_repo, hooks={"pre_push": {"enabled": False}})
    _add_secret(git_repo)

    result = _invoke("check", "--repo-root", str(git_repo), "--hook", "pre-push")

    assert result.exit_code == 0
    assert not (git_repo / ".changegate" / "out").exists()


def test_pre_push_hook_runs_when_enabled(git_repo: Path) -> None:
    _write_config(git_repo)
    _add_secret(git_repo)

    assert _invoke("check", "--repo-root", str(git_repo), "--hook", "pre-push").exit_code == 2


def test_pre_push_reviews_commits_of_a_new_branch(tmp_path: Path, git_repo: Path, git: Callable[..., str]) -> None:
    _write_config(git_repo)
    head = _push_new_branch(tmp_path, git_repo, git)

    result = _invoke(
        "check", "--repo-root", str(git_repo), "--hook", "pre-push", "--remote", "origin", stdin=_ref_line(head)
    )

    assert result.exit_code == 2, result.output
    payload = json.loads((git_repo / ".changegate" / "out" / "GATE_REPORT.json").read_text(encoding="utf-8"))
    assert payload["head"] == head
    assert payload["base"] == git(git_repo, "rev-parse", "main")
    assert [item["path"] for item in payload["files"]] == ["src/auth/login.ts"]


def test_pre_push_reviews_committed_content_not_working_tree(
    tmp_path: Path, git_repo: Path, git: Callable[..., str]
) -> None:
    _write_config(git_repo)
    head = _push_new_branch(tmp_path, git_repo, git)
    (git_repo / "src" / "auth" / "login.ts").write_text("const token = readSecret();\n", encoding="utf-8")

    result = _invoke("check", "--repo-root", str(git_repo), "--hook", "pre-push", stdin=_ref_line(head))

    assert result.exit_code == 2, result.output


def test_pre_push_without_ref_input_reviews_unpushed_commits(
    tmp_path: Path, git_repo: Path, git: Callable[..., str]
) -> None:
    _write_config(git_repo)
    _push_new_branch(tmp_path, git_repo, git)

    result = _invoke("check", "--repo-root", str(git_repo), "--hook", "pre-push")

    assert result.exit_code == 2, result.output
    assert "BLOCK" in result.output


def test_pre_push_of_branch_deletion_has_nothing_to_review(git_repo: Path, git: Callable[..., str]) -> None:
    _write_config(git_repo)
    _add_secret(git_repo)
    tip = git(git_repo, "rev-parse", "HEAD")

    result = _invoke(
        "check",
        "--repo-root",
        str(git_repo),
        "--hook",
        "pre-push",
        stdin=f"(delete) {'0' * 40} refs/heads/old {tip}\n",
    )

    assert result.exit_code == 0, result.output
    assert "nothing to review" in result.output


def test_reports_inside_repository_do_not_change_the_next_run(git_repo: Path) -> None:
    _write_config(git_repo)
    _add_secret(git_repo)
    out_dir = git_repo / "reports"

    _invoke("check", "--repo-root", str(git_repo), "--out", str(out_dir))
    first = json.loads((out_dir / "GATE_REPORT.json").read_text(encoding="utf-8"))
    _invoke("check", "--repo-root", str(git_repo), "--out", str(out_dir))
    second = json.loads((out_dir / "GATE_REPORT.json").read_text(encoding="utf-8"))

    assert [item["path"] for item in second["files"]] == [item["path"] for item in first["files"]]
    assert not any(item["path"].startswith("reports/") for item in second["files"])


def test_outside_repository_is_fatal(tmp_path: Path) -> None:
    result = _invoke("check", "--repo-root", str(tmp_path))

    assert result.exit_code == 1
    assert "NOT_A_VERSIONED_TREE" in result.output


def test_invalid_configuration_is_fatal(git_repo: Path) -> None:
    _write_config(git_repo, mode="lenient")

    result = _invoke("check", "--repo-root", str(git_repo))

    assert result.exit_code == 1
    assert "CONFIG_SCHEMA_INVALID" in result.output


def test_degraded_run_is_marked(git_repo: Path) -> None:
    _write_config(
        git_repo,
        critical_paths=[],
        analyses={
            "default": ["lint"],
            "registry": {"lint": {"command": [sys.executable, "-c", "import sys; sys.exit(4)"]}},
        },
    )
    (git_repo / "app.py").write_text("x = 1\n", encoding="utf-8")

    result = _invoke("check", "--repo-root", str(git_repo))

    assert result.exit_code == 0
    assert "DEGRADED" in result.output


def test_config_init_refuses_to_overwrite(git_repo: Path) -> None:
    first = _invoke("config", "init", "--repo-root", str(git_repo))
    second = _invoke("config", "init", "--repo-root", str(git_repo))
    forced = _invoke("config", "init", "--repo-root", str(git_repo), "--force")

    assert first.exit_code == 0, first.output
    assert (git_repo / ".github" / "codereview-config.yml").exists()
    assert second.exit_code == 1
    assert forced.exit_code == 0


def test_hooks_install_defaults_to_symlink(git_repo: Path) -> None:
    result = _invoke("hooks", "install", "--repo-root", str(git_repo))

    assert result.exit_code == 0, result.output
    assert "symlink" in result.output
    assert (git_repo / ".git" / "hooks" / "pre-push").is_symlink()


def test_hooks_install_hooks_path(git_repo: Path, git: Callable[..., str]) -> None:
    result = _invoke("hooks", "install", "--repo-root", str(git_repo), "--method", "hooks-path")

    assert result.exit_code == 0, result.output
    assert git(git_repo, "config", "core.hooksPath") == ".github/hooks"


def test_hooks_install_rejects_unknown_method(git_repo: Path) -> None:
    assert _invoke("hooks", "install", "--repo-root", str(git_repo), "--method", "hardlink").exit_code == 1


def test_cache_show_and_clear(git_repo: Path) -> None:
    _write_config(git_repo)
    _add_secret(git_repo)
    _invoke("check", "--repo-root", str(git_repo))

    shown = _invoke("cache", "show", "--repo-root", str(git_repo))
    cleared = _invoke("cache", "clear", "--repo-root", str(git_repo))
    empty = _invoke("cache", "show", "--repo-root", str(git_repo))

    assert shown.exit_code == 0
    assert "src/auth/login.ts" in shown.output
    assert cleared.exit_code == 0
    assert "Cleared 1 cache entries" in cleared.output
    assert "Cache is empty" in empty.output
