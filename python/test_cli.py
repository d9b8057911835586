"""
Tests for settings loading, diagnostics rendering and the command line.

Run: python3 test_cli.py
From: python/
"""

import io
import json
import sys
import tempfile
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path

sys.path.insert(0, '.')

from pydantic import ValidationError

from bundle_fixture import BUNDLE
from shapepatch import cli
from shapepatch.diagnostics import describe_change, format_outcomes
from shapepatch.models import OutcomeStatus, PatchOutcome, PatchSettings, load_settings


def _run_cli(argv):
    out, err = io.StringIO(), io.StringIO()
    code = 0
    with redirect_stdout(out), redirect_stderr(err):
        try:
            cli.main(argv)
        except SystemExit as e:
            code = e.code or 0
    return code, out.getvalue(), err.getvalue()


def test_settings_defaults_and_file():
    settings = PatchSettings()
    assert settings.model_sentinels == ["claude-sonnet-4.5", "gpt-5"]
    assert settings.schema_match_count == 2

    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / "settings.json"
        path.write_text(json.dumps({"model_env_var": "MY_MODEL", "schema_match_count": None}), encoding="utf-8")
        loaded = load_settings(path)
        assert loaded.model_env_var == "MY_MODEL"
        assert loaded.schema_match_count is None
        assert loaded.menu_entry_count == 3

        path.write_text("", encoding="utf-8")
        assert load_settings(path) == PatchSettings()

        path.write_text(json.dumps({"no_such_key": 1}), encoding="utf-8")
        try:
            load_settings(path)
        except ValidationError:
            pass
        else:
            raise AssertionError("unknown keys must be rejected")
    print("PASS: settings defaults and file")


def test_describe_change():
    before = "function f(a){" + "x" * 60 + "return a}"
    after = "function f(a){" + "x" * 60 + "return b}"
    preview = describe_change(before, after, context=10)
    assert "[-a-]{+b+}" in preview
    assert preview.startswith("…")
    assert preview.endswith("}")
    assert len(preview) < len(before)

    assert describe_change("abc", "abc", context=5) == "abc"
    print("PASS: describe_change")


def test_format_outcomes():
    outcomes = [
        PatchOutcome(patch_id="a", description="A", status=OutcomeStatus.APPLIED, change="[-x-]{+y+}"),
        PatchOutcome(patch_id="b", description="B", status=OutcomeStatus.SKIPPED, reason="missing", notes=["n1"]),
    ]
    report = format_outcomes(outcomes, show_changes=True)
    assert "a: APPLIED" in report
    assert "b: SKIPPED (missing)" in report
    assert "note: n1" in report
    assert "[-x-]{+y+}" in report
    assert "[-x-]" not in format_outcomes(outcomes)
    print("PASS: format_outcomes")


def test_cli_apply_writes_output():
    with tempfile.TemporaryDirectory() as tmp:
        bundle = Path(tmp) / "index.js"
        bundle.write_text(BUNDLE, encoding="utf-8")

        code, out, err = _run_cli(["apply", str(bundle), "--tool-version", "9.9.9"])
        assert code == 0, err
        patched = Path(tmp) / "index_patched.js"
        assert patched.exists()
        text = patched.read_text(encoding="utf-8")
        assert "9.9.9 (shapepatch)" in text
        assert "model-list: APPLIED" in out
        assert "Saved to" in err
        # The input is never modified.
        assert bundle.read_text(encoding="utf-8") == BUNDLE
    print("PASS: CLI apply writes output")


def test_cli_apply_required_failure():
    with tempfile.TemporaryDirectory() as tmp:
        bundle = Path(tmp) / "index.js"
        bundle.write_text("var a=1;", encoding="utf-8")
        out_path = Path(tmp) / "out.js"

        code, out, err = _run_cli(["apply", str(bundle), "-o", str(out_path), "--require", "model-list"])
        assert code == 1
        assert not out_path.exists()
        assert "required patch" in err
    print("PASS: CLI apply required failure")


def test_cli_check_json():
    with tempfile.TemporaryDirectory() as tmp:
        bundle = Path(tmp) / "index.js"
        bundle.write_text(BUNDLE, encoding="utf-8")

        code, out, err = _run_cli(["check", str(bundle), "--json"])
        assert code == 0, err
        report = json.loads(out)
        assert "text" not in report
        assert [o["status"] for o in report["outcomes"]] == ["APPLIED"] * 7
        assert report["bindings"]["menu_entries"] == "FeI"
        assert list(Path(tmp).iterdir()) == [bundle]
    print("PASS: CLI check JSON")


def test_cli_missing_file():
    code, out, err = _run_cli(["check", "/nonexistent/bundle.js"])
    assert code == 1
    assert "File not found" in err
    print("PASS: CLI missing file")


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

if __name__ == '__main__':
    tests = [
        test_settings_defaults_and_file,
        test_describe_change,
        test_format_outcomes,
        test_cli_apply_writes_output,
        test_cli_apply_required_failure,
        test_cli_check_json,
        test_cli_missing_file,
    ]

    passed = 0
    failed = 0
    for t in tests:
        try:
            t()
            passed += 1
        except Exception as e:
            print(f"FAIL: {t.__name__} — {e}")
            failed += 1

    print(f"\n{'=' * 50}")
    print(f"Results: {passed} passed, {failed} failed out of {len(tests)} tests")
    if failed > 0:
        sys.exit(1)
    else:
        print("All tests passed!")
