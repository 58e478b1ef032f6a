"""Typed payloads for the few messages the proxy reads or creates."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

JSONRPC_VERSION = "2.0"

OPEN_SOLUTION_METHOD = "solution/open"
OPEN_PROJECT_METHOD = "project/open"


@dataclass
class Position:
    line: int = 0
    character: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"line": self.line, "character": self.character}


@dataclass
class Range:
    start: Position = field(default_factory=Position)
    end: Position = field(default_factory=Position)

    def to_dict(self) -> dict[str, Any]:
        return {"start": self.start.to_dict(), "end": self.end.to_dict()}


@dataclass
class TextDocumentIdentifier:
    uri: str


@dataclass
class DiagnosticParams:
    """Params of a ``textDocument/diagnostic`` request.

    Only the document and range are modelled. ``identifier`` and
    ``previousResultId`` are intentionally absent: the wrapped server
    returns no diagnostics when they are sent.
    """

    text_document: TextDocumentIdentifier
    range: Range | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"textDocument": {"uri": self.text_document.uri}}
        if self.range is not None:
            data["range"] = self.range.to_dict()
        return data


@dataclass
class DiagnosticRequest:
    id: int | str | None
    method: str
    params: DiagnosticParams

    @classmethod
    def from_json(cls, text: str) -> DiagnosticRequest:
        """Parse a diagnostic request.

        Raises:
            ValueError: if the text is not JSON or lacks ``textDocument.uri``.
        """
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError("request is not a JSON object")
        params = data.get("params")
        document = params.get("textDocument") if isinstance(params, dict) else None
        uri = document.get("uri") if isinstance(document, dict) else None
        if not isinstance(uri, str) or not uri:
            raise ValueError("request has no textDocument.uri")
        return cls(
            id=data.get("id"),
            method=str(data.get("method", "")),
            params=DiagnosticParams(text_document=TextDocumentIdentifier(uri=uri)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "jsonrpc": JSONRPC_VERSION,
            "id": self.id,
            "method": self.method,
            "params": self.params.to_dict(),
        }


@dataclass
class OpenSolutionNotification:
    solution: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "jsonrpc": JSONRPC_VERSION,
            "method": OPEN_SOLUTION_METHOD,
            "params": {"solution": self.solution},
        }


@dataclass
class OpenProjectNotification:
    projects: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "jsonrpc": JSONRPC_VERSION,
            "method": OPEN_PROJECT_METHOD,
            "params": {"projects": list(self.projects)},
        }


def serialize(payload: Any) -> str:
    """Serialize a payload (anything with ``to_dict``) to compact JSON text."""
    return json.dumps(payload.to_dict(), separators=(",", ":"), ensure_ascii=False)
