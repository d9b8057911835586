"""
End-to-end tests for apply_patches: scenarios, dependency propagation,
non-reentrancy and fatal failures.

Run: python3 test_pipeline.py
From: python/
"""

import sys

sys.path.insert(0, '.')

from bundle_fixture import BUNDLE
from shapepatch import apply_patches
from shapepatch.errors import PatternNotFound
from shapepatch.models import OutcomeStatus, PatchSettings
from shapepatch.patches import (
    AVAILABILITY_CHECK,
    MENU_ENTRIES,
    MODEL_LIST,
    MODEL_MENU,
    MODEL_OPTION,
    MODEL_RESOLVER,
    SCHEMA_VALIDATOR,
    default_steps,
)
from shapepatch.patching.bindings import Binding
from shapepatch.patching.steps import Match, PatchStep, check_order
from shapepatch.patching.tree import parse, structurally_equal


def test_scenario_model_list_extension():
    source = 'const ABC=["claude-sonnet-4.5","gpt-5","foo"];'
    result = apply_patches(source)
    assert result.ok
    assert result.status(MODEL_LIST) == OutcomeStatus.APPLIED
    assert result.bindings["model_list"] == "ABC"
    assert result.text.startswith(source + "\ntry {")
    assert "ABC.includes(extra)" in result.text
    assert "ABC.push(cfg[\"model\"])" in result.text
    print("PASS: scenario 1 — model list extension")


def test_scenario_availability_body():
    source = 'function XYZ(t,e){return e.find(i=>i.id===t)&&e.find(i=>i.id===t).policy.state!=="disabled";}'
    result = apply_patches(source)
    assert result.status(AVAILABILITY_CHECK) == OutcomeStatus.APPLIED
    assert result.text.startswith("function XYZ(t,e){\n")
    assert "if (!e) return true;" in result.text
    assert "e.find(i=>i.id===t)" not in result.text
    print("PASS: scenario 2 — availability body replaced")


def test_scenario_schema_sites():
    source = (
        'const ABC=["claude-sonnet-4.5","gpt-5","foo"];'
        "const S={theme:RR().optional(),model:QQ(ABC).optional(),"
        "selectedModel:QQ(ABC).optional(),level:QQ(OTHER).optional()};"
    )
    result = apply_patches(source)
    assert result.status(SCHEMA_VALIDATOR) == OutcomeStatus.APPLIED
    assert "model:RR().optional(),selectedModel:RR().optional(),level:QQ(OTHER).optional()" in result.text
    assert result.bindings["schema_validator"] == "RR"
    print("PASS: scenario 3 — schema call sites")


def test_scenario_menu_truncation():
    source = 'const FEI=[{label:"a",value:"a"},{label:"b",value:"b"},{label:"c",value:"c"}];'
    result = apply_patches(source)
    assert result.status(MENU_ENTRIES) == OutcomeStatus.APPLIED
    assert result.text == 'const FEI=[{label:"a",value:"a"}];'
    print("PASS: scenario 4 — menu truncation")


def test_scenario_no_sentinels():
    source = BUNDLE.replace('"claude-sonnet-4.5","claude-sonnet-4","gpt-5"', '"alpha","beta","gamma"')
    result = apply_patches(source)
    assert result.ok
    assert result.status(MODEL_LIST) == OutcomeStatus.NOT_FOUND
    for patch_id in (MODEL_RESOLVER, SCHEMA_VALIDATOR, MODEL_MENU):
        outcome = result.outcome(patch_id)
        assert outcome.status == OutcomeStatus.SKIPPED, patch_id
        assert "model_list" in outcome.missing
    assert result.status(AVAILABILITY_CHECK) == OutcomeStatus.APPLIED
    assert result.status(MENU_ENTRIES) == OutcomeStatus.APPLIED

    option = result.outcome(MODEL_OPTION)
    assert option.status == OutcomeStatus.APPLIED
    assert any("model list unbound" in note for note in option.notes)
    # Without the bound list the wrapper is left alone.
    assert ".choices(C2)" in result.text
    assert "model_list" not in result.bindings
    print("PASS: scenario 5 — no sentinels")


def test_full_bundle():
    result = apply_patches(BUNDLE)
    assert result.ok, result.error
    assert [o.patch_id for o in result.outcomes] == [s.id for s in default_steps()]
    for outcome in result.outcomes:
        assert outcome.status == OutcomeStatus.APPLIED, f"{outcome.patch_id}: {outcome.reason}"
        assert outcome.change
    assert result.text.startswith("#!/usr/bin/env node\n")
    assert result.bindings["model_list"] == "C2"
    assert result.bindings["availability_check"] == "Fxe"
    print("PASS: full bundle")


def test_round_trip_mid_pipeline():
    result = apply_patches(BUNDLE)
    body = result.text.split("\n", 1)[1]
    tree = parse(body)
    assert structurally_equal(parse(tree.render()).root, tree.root)
    print("PASS: round trip mid pipeline")


def test_second_run_fails_safely():
    first = apply_patches(BUNDLE)
    second = apply_patches(first.text)
    assert second.ok
    assert second.text == first.text
    statuses = {o.patch_id: o.status for o in second.outcomes}
    assert statuses[MODEL_LIST] == OutcomeStatus.NOT_FOUND
    assert statuses[AVAILABILITY_CHECK] == OutcomeStatus.NOT_FOUND
    assert statuses[MENU_ENTRIES] == OutcomeStatus.NOT_FOUND
    assert statuses[MODEL_OPTION] == OutcomeStatus.NOT_FOUND
    for patch_id in (MODEL_RESOLVER, SCHEMA_VALIDATOR, MODEL_MENU):
        assert statuses[patch_id] == OutcomeStatus.SKIPPED
    assert first.text.count("COPILOT_MODEL") == second.text.count("COPILOT_MODEL") == 1
    print("PASS: second run fails safely")


def test_parse_failure_is_fatal():
    result = apply_patches("var a = ;")
    assert result.text is None
    assert not result.ok
    assert "not valid JavaScript" in result.error
    print("PASS: parse failure is fatal")


def test_required_patch_not_applied():
    settings = PatchSettings(required_patches=[MODEL_LIST])
    result = apply_patches('const FEI=[{label:"a",value:"a"},{label:"b",value:"b"},{label:"c",value:"c"}];', settings)
    assert result.text is None
    assert MODEL_LIST in result.error
    assert result.status(MENU_ENTRIES) == OutcomeStatus.APPLIED

    result = apply_patches('const L=["gpt-5","x"];', settings)
    assert result.ok
    print("PASS: required patch not applied")


def test_failing_transform_is_contained():
    def finder(tree, bindings, settings):
        return Match(target=tree.statements()[0])

    def transform(tree, match, bindings, settings):
        raise RuntimeError("boom")

    def not_found(tree, bindings, settings):
        raise PatternNotFound("nothing here")

    steps = [
        PatchStep(id="explodes", description="raises", finder=finder, transform=transform, produces=("x",)),
        PatchStep(id="absent", description="finds nothing", finder=not_found, transform=transform),
        PatchStep(id="needs-x", description="requires x", finder=finder, transform=transform, requires=("x",)),
    ]
    result = apply_patches("var a=1;", steps=steps)
    assert result.text == "var a=1;"
    assert result.status("explodes") == OutcomeStatus.FAILED
    assert "RuntimeError: boom" in result.outcome("explodes").reason
    assert result.status("absent") == OutcomeStatus.NOT_FOUND
    assert result.outcome("needs-x").missing == ["x"]
    print("PASS: failing transform is contained")


def test_step_order_checked():
    steps = default_steps()
    check_order(steps)
    reordered = [steps[2]] + steps[:2] + steps[3:]
    try:
        check_order(reordered)
    except ValueError as e:
        assert MODEL_RESOLVER in str(e)
    else:
        raise AssertionError("a consumer before its producer must be rejected")

    try:
        check_order(steps + [steps[0]])
    except ValueError as e:
        assert "duplicate" in str(e)
    else:
        raise AssertionError("duplicate ids must be rejected")

    twice = PatchStep(id="again", description="", finder=steps[0].finder, transform=steps[0].transform, produces=("model_list",))
    try:
        check_order(steps + [twice])
    except ValueError as e:
        assert "'model_list' is produced by both" in str(e)
    else:
        raise AssertionError("a key with two producers must be rejected")
    print("PASS: step order checked")


def test_binding_conflict_is_contained():
    def finder(tree, bindings, settings):
        return Match(target=tree.statements()[0], captures=[Binding.identifier("k", "a")])

    def transform(tree, match, bindings, settings):
        number = next(n for n in tree.walk() if n.kind == "number")
        tree.set_text(number, str(int(number.text) + 1))
        return match.target.source

    steps = [
        PatchStep(id="one", description="", finder=finder, transform=transform, produces=("k",)),
        PatchStep(id="two", description="", finder=finder, transform=transform),
    ]
    result = apply_patches("var a=1;", steps=steps)
    assert result.ok
    assert result.status("one") == OutcomeStatus.APPLIED
    assert result.status("two") == OutcomeStatus.FAILED
    assert "already produced by one" in result.outcome("two").reason
    # The conflicting step never ran its transform.
    assert result.text == "var a=2;"
    assert result.bindings == {"k": "a"}
    print("PASS: binding conflict is contained")


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

if __name__ == '__main__':
    tests = [
        test_scenario_model_list_extension,
        test_scenario_availability_body,
        test_scenario_schema_sites,
        test_scenario_menu_truncation,
        test_scenario_no_sentinels,
        test_full_bundle,
        test_round_trip_mid_pipeline,
        test_second_run_fails_safely,
        test_parse_failure_is_fatal,
        test_required_patch_not_applied,
        test_failing_transform_is_contained,
        test_step_order_checked,
        test_binding_conflict_is_contained,
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
