#!/usr/bin/env python3
"""
Anti-debugging patcher for the Claude Code CLI bundle.

Finds the installed cli.js (following wrapper scripts and symlinks), backs it
up once, and neutralizes the self-checks that kill the process when a
debugger is attached. Works on the shipped minified text directly, so the
rest of the file stays byte-for-byte intact.

Usage:
    cc-antidebug patch                  # Auto-discover and patch
    cc-antidebug patch /path/to/cli.js  # Patch an explicit file
    cc-antidebug patch --dry-run        # Report what would change
    cc-antidebug patch --format         # Patch, then pretty-print with biome
    cc-antidebug restore                # Restore from <target>.backup
"""

import argparse
import contextlib
import json
import os
import re
import shutil
import subprocess
import sys
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


# ─── Constants ──────────────────────────────────────────────────────────────────

TARGET_EXECUTABLE = "claude"
BACKUP_SUFFIX = ".backup"

HOME = os.path.expanduser("~")
INSTALL_LOCATIONS = [
    os.path.join(HOME, ".claude/local/claude"),
    os.path.join(HOME, ".npm-global/bin/claude"),
    "/usr/local/bin/claude",
    os.path.join(HOME, ".local/bin/claude"),
    os.path.join(HOME, "node_modules/.bin/claude"),
    os.path.join(HOME, ".yarn/bin/claude"),
]

# Symlink-chain limit, same as the kernel's SYMLOOP_MAX
MAX_RESOLVE_DEPTH = 40
# Wrapper scripts are tiny; no need to read a multi-megabyte bundle to sniff it
WRAPPER_PROBE_BYTES = 64 * 1024

SHELL_SHEBANG_RE = re.compile(r'^#!.*\b(?:sh|bash|zsh|dash|ksh)\b')
EXEC_TARGET_RE = re.compile(r'\bexec\s+"([^"]+)"')

NEUTRALIZED_GUARD = "if(false)process.exit(1);"
NEUTRALIZED_GUARD_RE = re.compile(r'if\s*\(\s*false\s*\)\s*process\.exit\(')

BIOME_CONFIG = {
    "$schema": "https://biomejs.dev/schemas/1.9.4/schema.json",
    "files": {
        "maxSize": 104857600,  # 100MB
    },
    "formatter": {
        "enabled": True,
        "formatWithErrors": False,
        "indentStyle": "tab",
        "indentWidth": 3,
        "lineWidth": 120,
    },
}


# ─── Errors ─────────────────────────────────────────────────────────────────────

class PatchError(Exception):
    """Base error for failures that must reach the caller."""


class DiscoveryError(PatchError):
    """The target executable could not be found."""


# ─── Data Classes ───────────────────────────────────────────────────────────────

class PatchState(Enum):
    NOT_APPLIED = "not_applied"
    APPLIED = "applied"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class Range:
    """Half-open [start, end) span over a content string."""
    start: int
    end: int


@dataclass
class PatchRule:
    """Definition of a single rule in the pattern library."""
    name: str
    rule_type: str  # 'regex_replace' (all matches) or 'range_replace' (first anchor only)
    replacement: str
    # For regex_replace
    search_regex: Optional[str] = None
    # For range_replace
    anchor: Optional[str] = None
    backward: str = ""
    forward: str = ""
    match_braces: bool = False


@dataclass
class PatchResult:
    """Outcome of patch_target()."""
    path: str
    backup_path: str
    applied: List[str] = field(default_factory=list)
    dry_run: bool = False

    @property
    def patched(self):
        """True when new content was written to disk."""
        return bool(self.applied) and not self.dry_run


# ─── Utility Functions ──────────────────────────────────────────────────────────

def log(msg, level="INFO"):
    prefix = {"INFO": "  ", "OK": "  ✓", "FAIL": "  ✗", "WARN": "  !", "SKIP": "  →"}
    print(f"{prefix.get(level, '  ')} {msg}")


def fatal(msg):
    print(f"\n  ✗ FATAL: {msg}", file=sys.stderr)
    sys.exit(1)


def run_cmd(cmd, check=True, capture=True, timeout=120, **kwargs):
    """Run a shell command."""
    result = subprocess.run(
        cmd, shell=isinstance(cmd, str), check=check,
        capture_output=capture, text=True, timeout=timeout, **kwargs
    )
    return result


def which(cmd):
    """Check if command exists in PATH."""
    return shutil.which(cmd) is not None


def read_file(path):
    """Read file content without newline translation, so writes round-trip exactly."""
    with open(path, "r", encoding="utf-8", errors="surrogateescape", newline="") as f:
        return f.read()


def write_file(path, content):
    """Write file content."""
    with open(path, "w", encoding="utf-8", errors="surrogateescape", newline="") as f:
        f.write(content)


def backup_path_for(target):
    return target + BACKUP_SUFFIX


# ─── Range Scanner ──────────────────────────────────────────────────────────────

def find_range(content, anchor, backward, forward, match_braces=False):
    """Compute the range enclosing the first occurrence of `anchor`.

    The start is the last `backward` delimiter lying entirely before the
    anchor (or the anchor itself if there is none). The end is just past the
    first `forward` delimiter that is not wholly inside the anchor, or, in
    brace mode, just past the `}` that closes the first `{` at or after the
    anchor. Either way the end falls back to the end of the anchor.

    Brace mode counts every brace it sees, including ones inside string
    literals of the scanned text.

    Returns a Range, or None if the anchor does not occur.
    """
    if not anchor:
        return None
    idx = content.find(anchor)
    if idx < 0:
        return None
    anchor_end = idx + len(anchor)

    start = idx
    if backward:
        found = content.rfind(backward, 0, idx)
        if found >= 0:
            start = found

    end = anchor_end
    if match_braces:
        depth = 0
        opened = False
        for i in range(idx, len(content)):
            ch = content[i]
            if ch == "{":
                depth += 1
                opened = True
            elif ch == "}" and opened:
                depth -= 1
                if depth == 0:
                    end = max(i + 1, anchor_end)
                    break
    elif forward:
        found = content.find(forward, max(idx, anchor_end - len(forward) + 1))
        if found >= 0:
            end = found + len(forward)

    return Range(start, end)


def scan_and_replace(content, anchor, backward, forward, replacement, match_braces=False):
    """Replace the range around `anchor` (see find_range) with `replacement`.

    Returns the modified content, or None if the anchor was not found.
    """
    span = find_range(content, anchor, backward, forward, match_braces)
    if span is None:
        return None
    return content[:span.start] + replacement + content[span.end:]


# ─── Pattern Library ────────────────────────────────────────────────────────────

# Every guard is rewritten to the same literal; it no longer matches any rule
GUARD_PATTERNS = [
    # Standard pattern: if(PF5())process.exit(1);
    PatchRule(
        name="Anti-debug guard",
        rule_type="regex_replace",
        search_regex=r'if\([A-Za-z0-9_$]+\(\)\)process\.exit\(1\);',
        replacement=NEUTRALIZED_GUARD,
    ),
    # With spaces (formatted bundle): if (PF5()) process.exit(1);
    PatchRule(
        name="Anti-debug guard (spaced)",
        rule_type="regex_replace",
        search_regex=r'if\s*\([A-Za-z0-9_$]+\(\)\)\s*process\.exit\(1\);',
        replacement=NEUTRALIZED_GUARD,
    ),
    # Different exit codes: if(PF5())process.exit(2);
    PatchRule(
        name="Anti-debug guard (exit code)",
        rule_type="regex_replace",
        search_regex=r'if\([A-Za-z0-9_$]+\(\)\)process\.exit\(\d+\);',
        replacement=NEUTRALIZED_GUARD,
    ),
    # Anything else: spacing inside the parens and any exit code
    PatchRule(
        name="Anti-debug guard (loose)",
        rule_type="regex_replace",
        search_regex=r'if\s*\(\s*[A-Za-z0-9_$]+\(\s*\)\s*\)\s*process\.exit\(\s*\d+\s*\);',
        replacement=NEUTRALIZED_GUARD,
    ),
]

ANCHOR_RULES = [
    # `if(...)return ... "no need to monitor cost" ...;` becomes a bare `;`
    PatchRule(
        name="Subscription cost-monitor check",
        rule_type="range_replace",
        anchor="no need to monitor cost",
        backward="return",
        forward=";",
        replacement=";",
    ),
]

PATCH_RULES = GUARD_PATTERNS + ANCHOR_RULES


def apply_single_rule(rule, content):
    """Apply one rule. Returns modified content, or None if the rule did not match."""
    if rule.rule_type == "regex_replace":
        # Callable replacement keeps the template literal (no backreference parsing)
        new_content, count = re.subn(rule.search_regex, lambda m: rule.replacement, content)
        if count == 0 or new_content == content:
            return None
        return new_content

    elif rule.rule_type == "range_replace":
        new_content = scan_and_replace(
            content, rule.anchor, rule.backward, rule.forward,
            rule.replacement, rule.match_braces,
        )
        if new_content is None or new_content == content:
            return None
        return new_content

    raise PatchError(f"Unknown rule type: {rule.rule_type}")


def apply_rules(content, rules=None):
    """Run every rule in order, each on the previous rule's output.

    Returns (new_content, names_of_rules_that_changed_it).
    """
    rules = PATCH_RULES if rules is None else rules
    applied = []
    for rule in rules:
        result = apply_single_rule(rule, content)
        if result is None:
            continue
        content = result
        applied.append(rule.name)
    return content, applied


def count_live_guards(content):
    """Number of guard idioms that would still be rewritten."""
    # The loose pattern matches every variant the stricter ones do
    return len(re.findall(GUARD_PATTERNS[-1].search_regex, content))


def check_patch_state(content):
    """Infer patch state from content shape alone."""
    _, pending = apply_rules(content)
    neutralized = NEUTRALIZED_GUARD_RE.search(content) is not None

    if pending and not neutralized:
        return PatchState.NOT_APPLIED
    if not pending and neutralized:
        return PatchState.APPLIED
    # Partially patched, or a bundle shape none of the rules know about
    return PatchState.CONFLICT


# ─── Path Resolution ────────────────────────────────────────────────────────────

def _join_relative(base_path, target):
    if not os.path.isabs(target):
        target = os.path.join(os.path.dirname(base_path), target)
    # normpath drops `..` textually; only trust it if it names the same file
    tidy = os.path.normpath(target)
    if tidy == target or not os.path.exists(tidy):
        return target
    try:
        return tidy if os.path.samefile(tidy, target) else target
    except OSError:
        return target


def resolve_path(path, max_depth=MAX_RESOLVE_DEPTH):
    """Follow wrapper scripts and symlinks down to the file that holds the bundle.

    A shell wrapper (`#!/bin/bash` ... `exec "<target>" "$@"`) is followed to
    its exec target when that target exists; a symlink is followed to its
    link target. Never raises: on any I/O error the last known path is
    returned.
    """
    if max_depth <= 0:
        log(f"Indirection limit reached, stopping at {path}", "WARN")
        return path

    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            head = f.read(WRAPPER_PROBE_BYTES)
    except OSError:
        return path

    first_line = head.split("\n", 1)[0]
    if SHELL_SHEBANG_RE.match(first_line):
        m = EXEC_TARGET_RE.search(head)
        if m:
            target = _join_relative(path, m.group(1))
            if os.path.isfile(target):
                return resolve_path(target, max_depth - 1)

    try:
        if os.path.islink(path):
            target = _join_relative(path, os.readlink(path))
            if os.path.exists(target):
                return resolve_path(target, max_depth - 1)
    except OSError:
        return path

    return path


# ─── Target Discovery ───────────────────────────────────────────────────────────

def discover_target_path():
    """Find the claude executable on PATH or in a known install location."""
    found = shutil.which(TARGET_EXECUTABLE)
    if found:
        return found

    for location in INSTALL_LOCATIONS:
        if os.path.exists(location):
            return location

    if not which("node"):
        raise DiscoveryError(
            "Claude Code requires Node.js, which is not installed.\n"
            "Install Node.js from: https://nodejs.org/\n"
            "\nAfter installing Node.js, install Claude Code:\n"
            "  npm install -g @anthropic-ai/claude-code"
        )

    raise DiscoveryError(
        "Claude Code not found. Install with:\n"
        "  npm install -g @anthropic-ai/claude-code\n"
        "\nIf already installed locally, try:\n"
        '  export PATH="$HOME/node_modules/.bin:$PATH"'
    )


def locate_target(path=None):
    """Return the concrete bundle path for `path`, discovering it when omitted."""
    return resolve_path(path or discover_target_path())


# ─── Patch / Restore ────────────────────────────────────────────────────────────

def patch_target(path=None, dry_run=False):
    """Back up the bundle once, then neutralize every guard the rules recognize.

    Writes only if at least one rule changed the content. A bundle where
    nothing matches (already patched, or reshaped by an update) is left
    untouched.
    """
    target = locate_target(path)
    if target.endswith(BACKUP_SUFFIX):
        raise PatchError(f"Refusing to patch a backup file: {target}")
    backup = backup_path_for(target)
    result = PatchResult(path=target, backup_path=backup, dry_run=dry_run)

    if os.path.exists(backup):
        log("Backup already exists", "SKIP")
    elif dry_run:
        log(f"Would create backup at {backup}", "SKIP")
    else:
        shutil.copy2(target, backup)
        log(f"Backup saved to {backup}", "OK")

    content = read_file(target)
    patched_content, applied = apply_rules(content)
    result.applied = applied

    if not applied:
        log("No known pattern found (already patched?)", "SKIP")
        return result

    if dry_run:
        for name in applied:
            log(f"{name}: would apply", "SKIP")
        return result

    for name in applied:
        log(f"{name}: applied", "OK")

    write_file(target, patched_content)
    log(f"Saved {os.path.basename(target)}", "OK")
    return result


def restore_target(path=None):
    """Copy the backup over the bundle. The backup itself is kept.

    Returns False (and writes nothing) when no backup exists.
    """
    target = locate_target(path)
    backup = backup_path_for(target)

    if not os.path.exists(backup):
        log(f"No backup found at {backup}, nothing to restore", "WARN")
        return False

    shutil.copy2(backup, target)
    log(f"Restored {os.path.basename(target)} from backup", "OK")
    return True


@contextlib.contextmanager
def patched_target(path=None):
    """Patch for the duration of a block, restoring afterwards even on error.

        with patched_target() as result:
            ...  # drive the SDK with a debugger attached
    """
    result = patch_target(path)
    try:
        yield result
    finally:
        restore_target(result.path)


# ─── Formatting ─────────────────────────────────────────────────────────────────

def format_with_biome(path):
    """Pretty-print the bundle with biome. Failures are reported, never raised.

    biome refuses to format files under node_modules, so the work happens on
    a copy in a temporary directory.
    """
    file_name = os.path.basename(path)
    temp_name = file_name if file_name.endswith(".js") else f"{file_name}.js"

    try:
        with tempfile.TemporaryDirectory(prefix="cc-antidebug-") as temp_dir:
            temp_file = os.path.join(temp_dir, temp_name)
            shutil.copyfile(path, temp_file)
            write_file(os.path.join(temp_dir, "biome.json"), json.dumps(BIOME_CONFIG, indent=2))

            run_cmd(["npx", "@biomejs/biome", "format", "--write", temp_name],
                    cwd=temp_dir, timeout=300)

            shutil.copyfile(temp_file, path)
    except subprocess.CalledProcessError as e:
        log((e.stderr or str(e)).strip(), "WARN")
        log("Formatting failed, but patch was applied successfully", "WARN")
        return False
    except (OSError, subprocess.TimeoutExpired) as e:
        log(str(e), "WARN")
        log("Formatting failed, but patch was applied successfully", "WARN")
        return False

    log(f"Formatted {file_name}", "OK")
    return True


# ─── Main ──────────────────────────────────────────────────────────────────────

def build_parser():
    parser = argparse.ArgumentParser(
        prog="cc-antidebug",
        description="Disable the anti-debugging checks in the Claude Code CLI bundle",
    )
    parser.add_argument("command", choices=["patch", "restore"])
    parser.add_argument(
        "path", nargs="?",
        help="Path to the claude executable or cli.js (auto-discovered if omitted)"
    )
    parser.add_argument(
        "--dry-run", action="store_true",
        help="Show what would be patched without modifying files"
    )
    parser.add_argument(
        "--format", action="store_true",
        help="Format the patched bundle with biome (requires npx)"
    )
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    try:
        if args.command == "patch":
            print("\n=== Patch ===")
            result = patch_target(args.path, dry_run=args.dry_run)
            if args.format and result.patched:
                format_with_biome(result.path)
            if result.patched:
                print(f"Patched {result.path}")
            elif result.applied:
                print(f"Would patch {result.path}")
            else:
                print(f"Nothing to patch in {result.path}")

        elif args.command == "restore":
            print("\n=== Restore ===")
            target = locate_target(args.path)
            if restore_target(target):
                print(f"Restored {target}")
            else:
                print(f"No backup for {target}")
    except (PatchError, OSError) as e:
        fatal(str(e))


if __name__ == "__main__":
    main()
