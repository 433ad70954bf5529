"""Output shaping — bound and clean tool output before it leaves the server."""

from __future__ import annotations

import os
import re
import tempfile

MAX_LINES = 2000
MAX_BYTES = 50 * 1024  # 50KB
OUTPUT_DIR = "~/.shellmcp/tool-output"

_ANSI_RE = re.compile(r"\x1b\[[0-9;?]*[a-zA-Z]")


def truncate_output(
    text: str,
    max_lines: int = MAX_LINES,
    max_bytes: int = MAX_BYTES,
    save_full: bool = True,
) -> str:
    """Bound program output to ``max_lines`` lines and ``max_bytes`` bytes.

    The tail is kept, since errors and the latest prompt sit at the end.
    When truncating, the full text can be saved to a temp file whose path
    is named in the notice.
    """
    if not text:
        return text

    lines = text.split("\n")
    byte_count = len(text.encode("utf-8", errors="replace"))
    if len(lines) <= max_lines and byte_count <= max_bytes:
        return text

    full_path = _save_to_temp(text) if save_full else None

    skipped_lines = max(0, len(lines) - max_lines)
    result = "\n".join(lines[skipped_lines:])

    skipped_bytes = 0
    result_bytes = result.encode("utf-8", errors="replace")
    if len(result_bytes) > max_bytes:
        # Keep the last max_bytes, cut at a safe UTF-8 boundary
        result = result_bytes[-max_bytes:].decode("utf-8", errors="ignore")
        skipped_bytes = len(result_bytes) - max_bytes

    notice_parts = []
    if skipped_lines:
        notice_parts.append(f"{skipped_lines} lines skipped")
    if skipped_bytes:
        notice_parts.append(f"{skipped_bytes} bytes skipped")

    notice = (
        f"[Output truncated: {', '.join(notice_parts)}. "
        f"Total: {len(lines)} lines, {byte_count} bytes]"
    )
    if full_path:
        notice += f"\n[Full output saved to: {full_path}]"
    return f"{notice}\n{result}"


def _save_to_temp(text: str) -> str:
    directory = os.path.expanduser(OUTPUT_DIR)
    os.makedirs(directory, exist_ok=True)
    fd, path = tempfile.mkstemp(prefix="shellmcp-", suffix=".txt", dir=directory)
    with os.fdopen(fd, "w") as f:
        f.write(text)
    return path


def strip_ansi(text: str) -> str:
    """Strip ANSI escape sequences (colors, cursor movement)."""
    return _ANSI_RE.sub("", text)


def sanitize_binary_output(text: str) -> str:
    """Drop control and format characters, keeping tab, newline and CR."""
    cleaned = []
    for ch in text:
        cp = ord(ch)
        if ch in ("\t", "\n", "\r"):
            cleaned.append(ch)
        elif cp >= 32 and not 0x7F <= cp < 0xA0 and not 0xFFF9 <= cp < 0xFFFC:
            cleaned.append(ch)
    return "".join(cleaned)


def clean_output(text: str) -> str:
    """Normalize line endings, strip ANSI codes and binary garbage, trim."""
    text = text.replace("\r\n", "\n")
    return sanitize_binary_output(strip_ansi(text)).strip()
