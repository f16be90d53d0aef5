#!/usr/bin/env python3
"""Verify the anti-debugging patch is applied to the Claude Code bundle.

Usage:
    python3 verify.py [path]
"""

import os
import sys

from cc_antidebug import (
    ANCHOR_RULES,
    NEUTRALIZED_GUARD_RE,
    PatchError,
    PatchState,
    backup_path_for,
    check_patch_state,
    count_live_guards,
    locate_target,
    read_file,
)


def build_checks(target):
    """Return (description, ok) pairs for the bundle at `target`."""
    content = read_file(target)
    backup = backup_path_for(target)
    checks = []

    checks.append(("Backup exists", os.path.exists(backup)))
    if os.path.exists(backup):
        checks.append((
            "Backup is unpatched",
            check_patch_state(read_file(backup)) != PatchState.APPLIED,
        ))

    checks.append(("No live anti-debug guards", count_live_guards(content) == 0))
    checks.append(("Anti-debug guard neutralized", NEUTRALIZED_GUARD_RE.search(content) is not None))

    for rule in ANCHOR_RULES:
        checks.append((f"{rule.name} removed", rule.anchor not in content))

    checks.append(("Patch state", check_patch_state(content) == PatchState.APPLIED))
    return checks


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv

    try:
        target = locate_target(argv[0] if argv else None)
    except PatchError as e:
        print(f"  FAIL     {e}", file=sys.stderr)
        sys.exit(1)

    if not os.path.exists(target):
        print(f"  MISSING  {target}")
        sys.exit(1)

    print(f"Target: {target}")
    print()

    passed = 0
    failed = 0
    errors = []

    for desc, ok in build_checks(target):
        if ok:
            print(f"  OK       {desc}")
            passed += 1
        else:
            print(f"  FAIL     {desc}")
            failed += 1
            errors.append(desc)

    print()
    print(f"Results: {passed} passed, {failed} failed, {passed + failed} total")

    if failed > 0:
        print()
        print("Failed checks:")
        for e in errors:
            print(f"  - {e}")
        sys.exit(1)
    else:
        print("Patch verified.")


if __name__ == "__main__":
    main()
