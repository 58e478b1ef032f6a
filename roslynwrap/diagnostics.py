"""Whole-file range rewrite for ``textDocument/diagnostic`` requests."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from urllib.parse import urlparse
from urllib.request import url2pathname

from roslynwrap.schema import DiagnosticRequest, Position, Range, serialize

logger = logging.getLogger(__name__)

_LINE_BREAK = re.compile(r"\r\n|\r|\n")


def uri_to_path(uri: str) -> Path:
    """Resolve a ``file://`` URI to a local path.

    Raises:
        ValueError: for any other scheme.
    """
    parsed = urlparse(uri)
    if parsed.scheme != "file":
        raise ValueError(f"Not a file URI: {uri}")
    path = url2pathname(parsed.path)
    if parsed.netloc and parsed.netloc != "localhost":
        path = f"//{parsed.netloc}{path}"
    return Path(path)


def file_extent(path: Path) -> tuple[int, int]:
    """Return ``(line_count, last_line_length)`` for a text file.

    A trailing line break does not start a new line. The length is counted
    in UTF-16 code units, the default LSP position encoding.
    """
    text = path.read_text(encoding="utf-8-sig", errors="replace")
    lines = _LINE_BREAK.split(text)
    if lines and lines[-1] == "":
        lines.pop()
    if not lines:
        return 0, 0
    return len(lines), len(lines[-1].encode("utf-16-le")) // 2


def enrich_diagnostic_request(message: str) -> str:
    """Give a diagnostic request a range covering the whole document.

    Returns *message* untouched if it cannot be parsed or the document
    cannot be read.
    """
    try:
        request = DiagnosticRequest.from_json(message)
        line_count, last_length = file_extent(uri_to_path(request.params.text_document.uri))
    except (ValueError, OSError) as e:
        logger.warning("Forwarding diagnostic request unmodified: %s", e)
        return message

    request.params.range = Range(
        start=Position(line=0, character=0),
        end=Position(line=line_count, character=last_length),
    )
    return serialize(request)
