"""
Tests for batched text edits and the text-anchored patches.

Run: python3 test_textual.py
From: python/
"""

import sys

sys.path.insert(0, '.')

from bundle_fixture import BUNDLE
from shapepatch import apply_patches
from shapepatch.errors import OverlappingEditsError
from shapepatch.models import LocationResult, OutcomeStatus, PatchSettings, TextEdit
from shapepatch.textual import (
    VERSION_OUTPUT,
    WELCOME_MESSAGE,
    apply_anchor_patches,
    apply_at,
    apply_text_edits,
    find_chalk_var,
    find_version_output_location,
    find_welcome_message_location,
    write_version_output,
    write_welcome_message,
)


def test_edits_applied_against_original_offsets():
    text = "0123456789"
    edits = [
        TextEdit(start=1, end=3, new_text="AB"),
        TextEdit(start=8, end=8, new_text="++"),
        TextEdit(start=5, end=7, new_text=""),
    ]
    assert apply_text_edits(text, edits) == "0AB347++89"
    print("PASS: edits applied against original offsets")


def test_overlapping_edits_rejected():
    text = "abcdefgh"
    cases = [
        [TextEdit(start=1, end=4, new_text="x"), TextEdit(start=3, end=6, new_text="y")],
        [TextEdit(start=2, end=2, new_text="x"), TextEdit(start=2, end=2, new_text="y")],
        [TextEdit(start=0, end=8, new_text="x"), TextEdit(start=4, end=4, new_text="y")],
    ]
    for edits in cases:
        try:
            apply_text_edits(text, edits)
        except OverlappingEditsError:
            pass
        else:
            raise AssertionError(f"overlap not detected: {edits}")

    # Adjacent ranges touch but do not overlap.
    assert apply_text_edits(text, [TextEdit(start=0, end=2, new_text="X"), TextEdit(start=2, end=4, new_text="Y")]) == "XYefgh"
    print("PASS: overlapping edits rejected")


def test_edit_past_end_rejected():
    try:
        apply_text_edits("abc", [TextEdit(start=1, end=9, new_text="x")])
    except OverlappingEditsError:
        pass
    else:
        raise AssertionError("an edit past the end must be rejected")

    try:
        TextEdit(start=5, end=2)
    except ValueError:
        pass
    else:
        raise AssertionError("inverted ranges are invalid")
    print("PASS: edit past end rejected")


def test_apply_at():
    location = LocationResult(start_index=4, end_index=7)
    assert apply_at("the cat sat", location, "dog") == "the dog sat"
    print("PASS: apply_at")


def test_welcome_message():
    location = find_welcome_message_location(BUNDLE)
    assert BUNDLE[location.start_index : location.end_index] == '"Github Copilot"'

    patched = write_welcome_message(BUNDLE, 'Copilot "patched"')
    assert '{bold:!0},"Copilot \\"patched\\""),"!"' in patched
    assert find_welcome_message_location("nothing here") is None
    print("PASS: welcome message")


def test_version_output_location():
    version, session = find_version_output_location(BUNDLE)
    assert BUNDLE[version.start_index : version.end_index] == "}.VERSION} (GitHub Copilot CLI)"
    assert session.start_index == session.end_index
    assert session.identifiers == ["mI", "Bx", "Tx"]
    assert BUNDLE[: session.start_index].endswith('"Session ID: ",sid()))')
    assert find_chalk_var(BUNDLE) == "Chk"
    print("PASS: version output location")


def test_version_output():
    patched = write_version_output(BUNDLE, "1.2.3", tool_name="shapepatch")
    assert "}.VERSION} (GitHub Copilot CLI)\\n1.2.3 (shapepatch)`" in patched
    assert (
        '"Session ID: ",sid())),mI.createElement(Bx,null,mI.createElement(Tx,{dimColor:!0}," L "),'
        'mI.createElement(Tx,null,Chk.rgb(235, 109, 13).bold("shapepatch: v1.2.3"))));' in patched
    )
    print("PASS: version output")


def test_anchor_patches_batch():
    settings = PatchSettings(welcome_text="Hello", tool_version="2.0.0")
    text, outcomes = apply_anchor_patches(BUNDLE, settings)
    assert [o.patch_id for o in outcomes] == [WELCOME_MESSAGE, VERSION_OUTPUT]
    assert all(o.status == OutcomeStatus.APPLIED for o in outcomes)
    assert '{bold:!0},"Hello"),"!"' in text
    assert "2.0.0 (shapepatch)" in text

    untouched, none = apply_anchor_patches(BUNDLE, PatchSettings())
    assert untouched == BUNDLE and none == []
    print("PASS: anchor patches batch")


def test_anchor_patch_not_found():
    settings = PatchSettings(welcome_text="Hello")
    text, outcomes = apply_anchor_patches("var a=1;", settings)
    assert text == "var a=1;"
    assert outcomes[0].status == OutcomeStatus.NOT_FOUND
    print("PASS: anchor patch not found")


def test_anchor_patches_in_pipeline():
    settings = PatchSettings(welcome_text="Hello", tool_version="2.0.0")
    result = apply_patches(BUNDLE, settings)
    assert result.ok, result.error
    assert [o.patch_id for o in result.outcomes][:2] == [WELCOME_MESSAGE, VERSION_OUTPUT]
    assert all(o.applied for o in result.outcomes)
    assert '"Hello"' in result.text
    print("PASS: anchor patches in pipeline")


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

if __name__ == '__main__':
    tests = [
        test_edits_applied_against_original_offsets,
        test_overlapping_edits_rejected,
        test_edit_past_end_rejected,
        test_apply_at,
        test_welcome_message,
        test_version_output_location,
        test_version_output,
        test_anchor_patches_batch,
        test_anchor_patch_not_found,
        test_anchor_patches_in_pipeline,
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
