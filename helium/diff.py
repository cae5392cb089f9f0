"""Line-based unified diffs for auditing file-mutating tool calls.

Uses a plain LCS dynamic-programming table: O(m*n) time and space, which
is fine for source files and keeps the algorithm easy to verify.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from helium.errors import OldStringNotFoundError

CONTEXT_LINES = 3

OpType = Literal["equal", "delete", "insert"]


@dataclass
class DiffOp:
    type: OpType
    lines: list[str]


@dataclass
class Hunk:
    old_start: int
    old_count: int
    new_start: int
    new_count: int
    lines: list[str] = field(default_factory=list)

    @property
    def header(self) -> str:
        return f"@@ -{self.old_start},{self.old_count} +{self.new_start},{self.new_count} @@"


@dataclass
class _Line:
    kind: Literal["context", "remove", "add"]
    text: str
    old_num: int = 0
    new_num: int = 0


def longest_common_subsequence(a: list[str], b: list[str]) -> list[str]:
    """Return one longest common subsequence of two line lists."""
    m, n = len(a), len(b)
    dp = [[0] * (n + 1) for _ in range(m + 1)]
    for i in range(1, m + 1):
        for j in range(1, n + 1):
            if a[i - 1] == b[j - 1]:
                dp[i][j] = dp[i - 1][j - 1] + 1
            else:
                dp[i][j] = max(dp[i - 1][j], dp[i][j - 1])

    lcs: list[str] = []
    i, j = m, n
    while i > 0 and j > 0:
        if a[i - 1] == b[j - 1]:
            lcs.append(a[i - 1])
            i -= 1
            j -= 1
        elif dp[i - 1][j] > dp[i][j - 1]:
            i -= 1
        else:
            j -= 1
    lcs.reverse()
    return lcs


def compute_diff_ops(old_lines: list[str], new_lines: list[str]) -> list[DiffOp]:
    """Walk both sides against their LCS and emit equal/delete/insert runs."""
    ops: list[DiffOp] = []
    old_idx = new_idx = 0

    for common in longest_common_subsequence(old_lines, new_lines):
        deletes: list[str] = []
        while old_idx < len(old_lines) and old_lines[old_idx] != common:
            deletes.append(old_lines[old_idx])
            old_idx += 1
        if deletes:
            ops.append(DiffOp("delete", deletes))

        inserts: list[str] = []
        while new_idx < len(new_lines) and new_lines[new_idx] != common:
            inserts.append(new_lines[new_idx])
            new_idx += 1
        if inserts:
            ops.append(DiffOp("insert", inserts))

        ops.append(DiffOp("equal", [common]))
        old_idx += 1
        new_idx += 1

    if old_idx < len(old_lines):
        ops.append(DiffOp("delete", old_lines[old_idx:]))
    if new_idx < len(new_lines):
        ops.append(DiffOp("insert", new_lines[new_idx:]))
    return ops


def build_hunks(ops: list[DiffOp], context_lines: int = CONTEXT_LINES) -> list[Hunk]:
    """Group changed lines with surrounding context into hunks.

    Windows that overlap or touch are merged into one hunk.
    """
    unified: list[_Line] = []
    old_num = new_num = 1
    for op in ops:
        for text in op.lines:
            if op.type == "equal":
                unified.append(_Line("context", text, old_num, new_num))
                old_num += 1
                new_num += 1
            elif op.type == "delete":
                unified.append(_Line("remove", text, old_num=old_num))
                old_num += 1
            else:
                unified.append(_Line("add", text, new_num=new_num))
                new_num += 1

    changes = [i for i, line in enumerate(unified) if line.kind != "context"]
    if not changes:
        return []

    groups: list[list[int]] = []
    for idx in changes:
        start = max(0, idx - context_lines)
        end = min(len(unified) - 1, idx + context_lines)
        if groups and start <= groups[-1][1] + 1:
            groups[-1][1] = max(groups[-1][1], end)
        else:
            groups.append([start, end])

    hunks: list[Hunk] = []
    for start, end in groups:
        hunk = Hunk(0, 0, 0, 0)
        for line in unified[start:end + 1]:
            if line.kind == "context":
                hunk.old_start = hunk.old_start or line.old_num
                hunk.new_start = hunk.new_start or line.new_num
                hunk.lines.append(f" {line.text}")
                hunk.old_count += 1
                hunk.new_count += 1
            elif line.kind == "remove":
                hunk.old_start = hunk.old_start or line.old_num
                hunk.lines.append(f"-{line.text}")
                hunk.old_count += 1
            else:
                hunk.new_start = hunk.new_start or line.new_num
                hunk.lines.append(f"+{line.text}")
                hunk.new_count += 1
        hunks.append(hunk)
    return hunks


def diff_hunks(old_content: str | None, new_content: str) -> list[Hunk]:
    old_lines = old_content.split("\n") if old_content else []
    return build_hunks(compute_diff_ops(old_lines, new_content.split("\n")))


def format_diff(old_header: str, new_header: str, hunks: list[Hunk]) -> str:
    """Render hunks as unified diff text; no hunks renders as ''."""
    if not hunks:
        return ""
    output = [old_header, new_header]
    for hunk in hunks:
        output.append(hunk.header)
        output.extend(hunk.lines)
    return "\n".join(output)


def edit_diff(
    path: str,
    content: str,
    old_string: str,
    new_string: str,
    replace_all: bool = False,
) -> str:
    """Diff of replacing ``old_string`` in ``content``.

    Raises OldStringNotFoundError before any diff work when ``old_string``
    does not occur in ``content``.
    """
    if old_string not in content:
        raise OldStringNotFoundError(path)
    count = -1 if replace_all else 1
    new_content = content.replace(old_string, new_string, count)
    return format_diff(f"--- a/{path}", f"+++ b/{path}", diff_hunks(content, new_content))


def write_diff(path: str, existing_content: str | None, new_content: str) -> str:
    """Diff of writing ``new_content``; ``None`` means the file is new."""
    old_header = "--- /dev/null" if existing_content is None else f"--- a/{path}"
    return format_diff(old_header, f"+++ b/{path}", diff_hunks(existing_content, new_content))
