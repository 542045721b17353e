"""Fingerprint generator. Deterministic grouping key for error events.

Two events share a fingerprint when they have the same normalized message and
the same first meaningful stack frame:

    raw         = "<message>::<frame>"   (or "<message>" when no frame)
    fingerprint = sha256(raw)[:16]       16 lowercase hex chars

The frame is the first line of the stack that points into the product's own
code. Frames from dependencies, framework internals, and anonymous code are
skipped, and line/column numbers are stripped so that unrelated edits that
shift code around do not split a group.

Both JavaScript ("    at fn (file.js:10:5)") and Python
('  File "app.py", line 10, in fn') stack formats are recognised.

No I/O. Same input always produces the same output.
"""

import hashlib
import logging
import re

logger = logging.getLogger(__name__)

MESSAGE_MAX_CHARS = 500
FINGERPRINT_HEX_CHARS = 16

JS_FRAME_MARKER = "at "
PY_FRAME_MARKER = 'File "'

# Substrings that mark a frame as not belonging to the product's own code.
IGNORED_FRAME_MARKERS = (
    "node_modules",
    "next/dist",
    "<anonymous>",
    "site-packages",
    "dist-packages",
)

_JS_LOCATION_SUFFIX = re.compile(r":\d+(?::\d+)?(\)?)$")
_PY_LINE_NUMBER = re.compile(r", line \d+")

FNV_OFFSET_BASIS = 0x811C9DC5
FNV_PRIME = 0x01000193
DJB2_SEED = 0x9747B28C
_UINT32 = 0xFFFFFFFF


def _probe_sha256() -> bool:
    try:
        hashlib.new("sha256")
    except ValueError:
        return False
    return True


_HAS_SHA256 = _probe_sha256()


def fingerprint(message: str, stack: str | None = None) -> str:
    """Return the 16-hex grouping key for an error.

    Falls back to fallback_fingerprint() only when the interpreter was built
    without SHA-256 support. The fallback has much weaker collision
    resistance and produces different keys, so a deployment must not mix the
    two.

    Args:
        message: Error message. Empty is valid.
        stack: Raw stack trace, or None.

    Returns:
        16 lowercase hex characters.
    """
    raw = fingerprint_input(message, stack)
    if not _HAS_SHA256:
        logger.warning("SHA-256 unavailable, using low-assurance fallback fingerprint.")
        return fallback_fingerprint(raw)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:FINGERPRINT_HEX_CHARS]


def fingerprint_input(message: str, stack: str | None = None) -> str:
    """Build the exact string that gets hashed."""
    normalized = message.strip()[:MESSAGE_MAX_CHARS]
    frame = extract_first_meaningful_frame(stack) if stack else ""
    return f"{normalized}::{frame}" if frame else normalized


def extract_first_meaningful_frame(stack: str) -> str:
    """Return the first application frame with its location numbers removed.

    Scans the stack top to bottom. Blank lines and lines that are not frames
    (the exception header, "During handling of..." lines, source excerpts)
    are skipped, as are frames containing any IGNORED_FRAME_MARKERS.

    If every frame is ignored, the first frame line is returned as-is,
    trimmed but not normalized. If there are no frame lines at all, returns
    an empty string.
    """
    first_frame = ""

    for line in stack.splitlines():
        trimmed = line.strip()
        if not trimmed:
            continue
        is_js = trimmed.startswith(JS_FRAME_MARKER)
        is_py = trimmed.startswith(PY_FRAME_MARKER)
        if not (is_js or is_py):
            continue
        if not first_frame:
            first_frame = trimmed
        if any(marker in trimmed for marker in IGNORED_FRAME_MARKERS):
            continue
        if is_js:
            return _JS_LOCATION_SUFFIX.sub(r"\1", trimmed)
        return _PY_LINE_NUMBER.sub("", trimmed)

    return first_frame


def fallback_fingerprint(raw: str) -> str:
    """Hash raw input with two independent 32-bit string hashes.

    h1 is FNV-1a and h2 is a djb2 variant (h = h * 33 ^ c). Both iterate
    over UTF-16 code units so that keys match those produced by browser
    clients using the same fallback. The result is h1 and h2 as 8 hex chars
    each.
    """
    h1 = FNV_OFFSET_BASIS
    h2 = DJB2_SEED
    units = raw.encode("utf-16-le")
    for i in range(0, len(units), 2):
        c = units[i] | (units[i + 1] << 8)
        h1 = ((h1 ^ c) * FNV_PRIME) & _UINT32
        h2 = ((h2 * 33) & _UINT32) ^ c
    return f"{h1:08x}{h2:08x}"
