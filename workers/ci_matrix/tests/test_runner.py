"""
test_runner — matrix execution, isolation, exit status and coverage gating.

Verification scripts are small shell scripts; the instrumentation tool
and uploader are the fakes from the shared conftest.

Properties:
  - Every variant ends SUCCEEDED or FAILED, in declaration order.
  - A failing variant never stops its siblings.
  - Exit code is the OR of variant failures, whatever coverage did.
  - Coverage starts only for collect_coverage AND success.
"""
import os
import threading
from pathlib import Path

import pytest

from ci_matrix import runner
from ci_matrix.core.flags import FlagSet
from ci_matrix.core.toolchain import parse_selector
from ci_matrix.core.variant import Variant
from ci_matrix.io.writer import read_report
from ci_matrix.policy.verdict import TERMINAL_STATUSES, VariantStatus
from ci_matrix.runner import RunOptions, run_matrix, run_variant

# Behaviour keyed on the resolved toolchain so one script serves a matrix.
SCRIPT = """\
mkdir -p "$CARGO_TARGET_DIR/debug"
env | sort > "$CARGO_TARGET_DIR/env.txt"
case "$RUSTUP_TOOLCHAIN" in
  beta) exit 3 ;;
esac
if [ "$DO_COV" = true ]; then
  names="bitcoin-good bitcoin-nodebug"
else
  names="bitcoin-$RUSTUP_TOOLCHAIN"
fi
for name in $names; do
  printf 'bin' > "$CARGO_TARGET_DIR/debug/$name"
  chmod +x "$CARGO_TARGET_DIR/debug/$name"
done
exit 0
"""


def _variant(index, toolchain, **flags):
    return Variant(index=index, toolchain=parse_selector(toolchain), flags=FlagSet(flags))


@pytest.fixture
def project(tmp_path, make_exe) -> Path:
    root = tmp_path / "project"
    make_exe(root / "contrib" / "test.sh", SCRIPT)
    return root


@pytest.fixture
def options(tmp_path, project) -> RunOptions:
    return RunOptions(
        project_dir=project,
        workspace_root=tmp_path / "ws",
        script=("./contrib/test.sh",),
        base_env={"PATH": os.environ.get("PATH", "/usr/bin:/bin")},
    )


def _env_of(result) -> dict:
    text = (Path(result.workspace) / "target" / "env.txt").read_text()
    return dict(line.split("=", 1) for line in text.splitlines() if "=" in line)


class TestRunVariant:

    def test_flags_and_toolchain_exposed(self, options):
        v = _variant(0, "1.37.0", run_fuzzing=True, collect_coverage=False)
        result = run_variant(v, options)

        env = _env_of(result)
        assert result.status == VariantStatus.SUCCEEDED.value
        assert env["RUSTUP_TOOLCHAIN"] == "1.37.0"
        assert env["DO_FUZZ"] == "true"
        assert env["DO_COV"] == "false"
        assert env["CI_VARIANT_ID"] == "0-1.37.0"
        assert env["CARGO_TARGET_DIR"] == str(Path(result.workspace) / "target")

    def test_nonzero_exit_is_failure(self, options):
        result = run_variant(_variant(0, "beta"), options)

        assert result.status == VariantStatus.FAILED.value
        assert result.failure_reason == "NONZERO_EXIT"
        assert result.exit_code == 3
        assert result.produced_artifacts == []

    def test_produced_artifacts_listed(self, options):
        result = run_variant(_variant(2, "nightly"), options)
        assert [Path(p).name for p in result.produced_artifacts] == ["bitcoin-nightly"]

    def test_missing_script_is_launch_error(self, options, tmp_path):
        opts = RunOptions(
            project_dir=options.project_dir,
            workspace_root=options.workspace_root,
            script=(str(tmp_path / "nope.sh"),),
            base_env=options.base_env,
        )
        result = run_variant(_variant(0, "stable"), opts)

        assert result.status == VariantStatus.FAILED.value
        assert result.failure_reason == "LAUNCH_ERROR"

    def test_timeout_marks_failed(self, tmp_path, make_exe, options):
        make_exe(tmp_path / "slow.sh", "exec sleep 30\n")
        opts = RunOptions(
            project_dir=options.project_dir,
            workspace_root=options.workspace_root,
            script=(str(tmp_path / "slow.sh"),),
            timeout=0.5,
            base_env=options.base_env,
        )
        result = run_variant(_variant(0, "stable"), opts)

        assert result.status == VariantStatus.FAILED.value
        assert result.failure_reason == "TIMEOUT"


class TestRunMatrix:

    def test_failure_isolated_and_order_kept(self, options, fake_tool, fake_uploader):
        variants = [_variant(0, "stable"), _variant(1, "beta"), _variant(2, "nightly")]
        report = run_matrix(
            variants, options,
            tool_factory=lambda ws: fake_tool(), uploader=fake_uploader(),
        )

        assert [r.variant_id for r in report.variants] == ["0-stable", "1-beta", "2-nightly"]
        assert [r.status for r in report.variants] == ["SUCCEEDED", "FAILED", "SUCCEEDED"]
        assert report.exit_code == 1
        assert report.overall_status == "FAILED"

    def test_all_terminal(self, options, fake_tool, fake_uploader):
        variants = [_variant(i, t) for i, t in enumerate(["stable", "beta", "nightly", "1.37.0"])]
        report = run_matrix(
            variants, options,
            tool_factory=lambda ws: fake_tool(), uploader=fake_uploader(),
        )

        assert len(report.variants) == 4
        assert all(VariantStatus(r.status) in TERMINAL_STATUSES for r in report.variants)
        assert report.finished_at is not None

    def test_all_succeed_exit_zero(self, options, fake_tool, fake_uploader):
        report = run_matrix(
            [_variant(0, "stable"), _variant(1, "nightly")], options,
            tool_factory=lambda ws: fake_tool(), uploader=fake_uploader(),
        )
        assert report.exit_code == 0
        assert report.overall_status == "SUCCEEDED"

    def test_concurrent_variants_do_not_see_each_other(self, options, fake_tool, fake_uploader):
        opts = RunOptions(
            project_dir=options.project_dir,
            workspace_root=options.workspace_root,
            script=options.script,
            concurrency=4,
            base_env=options.base_env,
        )
        variants = [_variant(0, "stable"), _variant(1, "nightly"), _variant(2, "1.37.0")]
        report = run_matrix(
            variants, opts,
            tool_factory=lambda ws: fake_tool(), uploader=fake_uploader(),
        )

        for r in report.variants:
            names = [Path(p).name for p in r.produced_artifacts]
            assert names == [f"bitcoin-{r.toolchain}"]

    def test_cancelled_before_start(self, options, fake_tool, fake_uploader):
        cancel = threading.Event()
        cancel.set()
        tool = fake_tool()
        report = run_matrix(
            [_variant(0, "stable", collect_coverage=True), _variant(1, "nightly")],
            options,
            tool_factory=lambda ws: tool, uploader=fake_uploader(), cancel=cancel,
        )

        assert [r.failure_reason for r in report.variants] == ["CANCELLED", "CANCELLED"]
        assert report.exit_code == 1
        assert tool.acquire_calls == 0

    def test_report_written(self, tmp_path, options, fake_tool, fake_uploader):
        opts = RunOptions(
            project_dir=options.project_dir,
            workspace_root=options.workspace_root,
            script=options.script,
            report_dir=tmp_path / "reports",
            base_env=options.base_env,
        )
        report = run_matrix(
            [_variant(0, "stable")], opts,
            tool_factory=lambda ws: fake_tool(), uploader=fake_uploader(),
            run_id="run42",
        )

        stored = read_report(tmp_path / "reports", "run42")
        assert stored is not None
        assert stored.exit_code == report.exit_code == 0
        assert stored.variants[0].variant_id == "0-stable"


class TestRunIsolation:
    """Consecutive runs sharing one workspace root never see each other's output."""

    TAGGED = """\
mkdir -p "$CARGO_TARGET_DIR/debug"
printf 'bin' > "$CARGO_TARGET_DIR/debug/bitcoin-$RUN_TAG"
chmod +x "$CARGO_TARGET_DIR/debug/bitcoin-$RUN_TAG"
exit 0
"""

    def _options(self, tmp_path, project, make_exe, tag):
        make_exe(project / "contrib" / "test.sh", self.TAGGED)
        return RunOptions(
            project_dir=project,
            workspace_root=tmp_path / "ws",
            base_env={"PATH": os.environ.get("PATH", "/usr/bin:/bin"), "RUN_TAG": tag},
        )

    def test_second_run_sees_only_its_binaries(self, tmp_path, project, make_exe, fake_tool, fake_uploader):
        variants = [_variant(0, "stable", collect_coverage=True)]
        run_matrix(
            variants, self._options(tmp_path, project, make_exe, "old"),
            tool_factory=lambda ws: fake_tool(), uploader=fake_uploader(),
        )

        tool = fake_tool()
        report = run_matrix(
            variants, self._options(tmp_path, project, make_exe, "new"),
            tool_factory=lambda ws: tool, uploader=fake_uploader(),
        )
        (result,) = report.variants

        assert [Path(p).name for p in result.produced_artifacts] == ["bitcoin-new"]
        assert tool.runs == ["bitcoin-new"]
        assert Path(result.workspace).parent.name == report.run_id

    def test_reused_run_id_starts_clean(self, tmp_path, project, make_exe, fake_tool, fake_uploader):
        variants = [_variant(0, "stable", collect_coverage=True)]
        run_matrix(
            variants, self._options(tmp_path, project, make_exe, "old"),
            tool_factory=lambda ws: fake_tool(), uploader=fake_uploader(),
            run_id="nightly-ci",
        )

        tool = fake_tool()
        report = run_matrix(
            variants, self._options(tmp_path, project, make_exe, "new"),
            tool_factory=lambda ws: tool, uploader=fake_uploader(),
            run_id="nightly-ci",
        )

        assert tool.runs == ["bitcoin-new"]
        assert report.variants[0].produced_artifacts[0].endswith("bitcoin-new")

    def test_inherited_alias_not_exposed(self, options, fake_tool, fake_uploader):
        opts = RunOptions(
            project_dir=options.project_dir,
            workspace_root=options.workspace_root,
            base_env={**options.base_env, "DO_COV": "true", "DO_BENCH": "true"},
        )
        tool = fake_tool()
        v = _variant(0, "stable", is_dependency_check=True)
        report = run_matrix([v], opts, tool_factory=lambda ws: tool, uploader=fake_uploader())
        (result,) = report.variants

        env = _env_of(result)
        assert env["DO_COV"] == "false"
        assert env["DO_BENCH"] == "false"
        assert env["AS_DEPENDENCY"] == "true"
        assert result.coverage is None
        assert tool.acquire_calls == 0


class TestCoverageGate:

    @pytest.mark.parametrize(
        "collect,toolchain,expect_run",
        [
            (True, "stable", True),
            (True, "beta", False),     # script fails
            (False, "stable", False),
            (False, "beta", False),
        ],
    )
    def test_precondition(self, options, fake_tool, fake_uploader, collect, toolchain, expect_run):
        tool = fake_tool()
        report = run_matrix(
            [_variant(0, toolchain, collect_coverage=collect)], options,
            tool_factory=lambda ws: tool, uploader=fake_uploader(),
        )
        (result,) = report.variants

        assert (tool.acquire_calls > 0) is expect_run
        if not collect:
            assert result.coverage is None
        elif not expect_run:
            assert result.coverage.reason == "VARIANT_FAILED"
            assert result.coverage.artifacts == []

    def test_upload_failure_keeps_success(self, options, fake_tool, fake_uploader):
        report = run_matrix(
            [_variant(0, "stable"), _variant(1, "nightly", collect_coverage=True)],
            options,
            tool_factory=lambda ws: fake_tool(), uploader=fake_uploader(fail=True),
        )

        assert report.exit_code == 0
        cov = report.variants[1].coverage
        assert cov.upload_status == "FAILED"
        assert report.variants[1].status == "SUCCEEDED"

    def test_prerequisite_failure_keeps_success(self, options, fake_tool, fake_uploader):
        uploader = fake_uploader()
        report = run_matrix(
            [_variant(0, "nightly", collect_coverage=True)], options,
            tool_factory=lambda ws: fake_tool(fail_acquire=True), uploader=uploader,
        )

        assert report.exit_code == 0
        assert report.variants[0].coverage.reason == "PREREQUISITE_FAILED"
        assert uploader.calls == []

    def test_coverage_disabled(self, options, fake_tool, fake_uploader):
        opts = RunOptions(
            project_dir=options.project_dir,
            workspace_root=options.workspace_root,
            script=options.script,
            coverage_enabled=False,
            base_env=options.base_env,
        )
        tool = fake_tool()
        report = run_matrix(
            [_variant(0, "stable", collect_coverage=True)], opts,
            tool_factory=lambda ws: tool, uploader=fake_uploader(),
        )
        assert report.variants[0].coverage is None
        assert tool.acquire_calls == 0


class TestEndToEnd:
    """stable without coverage + nightly with coverage, one binary lacking debug info."""

    def test_scenario(self, options, fake_tool, fake_uploader):
        tool = fake_tool(failing={"bitcoin-nodebug"})
        uploader = fake_uploader()
        variants = [
            _variant(0, "stable", collect_coverage=False),
            _variant(1, "nightly", collect_coverage=True),
        ]

        report = run_matrix(variants, options, tool_factory=lambda ws: tool, uploader=uploader)
        stable, nightly = report.variants

        assert stable.status == nightly.status == "SUCCEEDED"
        assert stable.coverage is None

        cov = nightly.coverage
        assert sorted(tool.runs) == ["bitcoin-good", "bitcoin-nodebug"]
        assert cov.succeeded_count == 1
        assert cov.failed_count == 1
        assert [a.binary_name for a in cov.artifacts if a.status == "FAILED"] == ["bitcoin-nodebug"]

        assert len(uploader.calls) == 1
        uploaded = sorted(Path(d).name for d in uploader.calls[0])
        assert uploaded == ["bitcoin-good"]
        assert cov.upload_status == "UPLOADED"
        assert cov.state == "COVERAGE_DONE"
        assert report.exit_code == 0


class TestCli:

    def test_main_exit_code(self, tmp_path, project, monkeypatch):
        monkeypatch.setattr(runner, "_install_cancel_handlers", lambda cancel: None)
        matrix = tmp_path / "matrix.json"
        matrix.write_text(
            '{"variants": [{"toolchain": "stable"}, {"toolchain": "beta"}]}'
        )

        code = runner.main([
            "--matrix", str(matrix),
            "--project-dir", str(project),
            "--workspace", str(tmp_path / "ws"),
            "--no-coverage",
        ])
        assert code == 1

    def test_main_invalid_matrix(self, tmp_path, monkeypatch):
        monkeypatch.setattr(runner, "_install_cancel_handlers", lambda cancel: None)
        matrix = tmp_path / "matrix.json"
        matrix.write_text('{"variants": [{"toolchain": "latest"}]}')

        assert runner.main(["--matrix", str(matrix)]) == 2
