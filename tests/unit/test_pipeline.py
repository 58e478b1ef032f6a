"""Tests for the interception pipeline and diagnostic rewrite."""

from __future__ import annotations

import json
import threading
from pathlib import Path

import pytest

from roslynwrap.diagnostics import enrich_diagnostic_request, file_extent, uri_to_path
from roslynwrap.pipeline import InterceptionPipeline, SessionState, message_method
from roslynwrap.workspace import Workspace

SOLUTION = "file:///repo/App.sln"
PROJECTS = ("file:///repo/src/App/App.csproj", "file:///repo/tests/App.Tests/App.Tests.csproj")

INITIALIZE = json.dumps(
    {"jsonrpc": "2.0", "id": 0, "method": "initialize", "params": {"processId": 1}}
)
INITIALIZED = json.dumps({"jsonrpc": "2.0", "method": "initialized", "params": {}})


def _diagnostic_request(uri: str, **params: object) -> str:
    return json.dumps(
        {
            "jsonrpc": "2.0",
            "id": 12,
            "method": "textDocument/diagnostic",
            "params": {"textDocument": {"uri": uri}, **params},
        }
    )


# ---------------------------------------------------------------------------
# message_method
# ---------------------------------------------------------------------------


class TestMessageMethod:
    def test_request(self):
        assert message_method(INITIALIZE) == "initialize"

    def test_whitespace_around_colon(self):
        assert message_method('{"method" : "shutdown"}') == "shutdown"

    def test_response_has_no_method(self):
        assert message_method('{"jsonrpc":"2.0","id":1,"result":{}}') is None

    def test_escaped_quote_in_value(self):
        # Returned as written, escapes not decoded.
        assert message_method(r'{"method":"a\"b"}') == r"a\"b"

    def test_nested_method_before_top_level(self):
        message = '{"jsonrpc":"2.0","id":0,"params":{"trace":{"method":"off"}},"method":"initialize"}'
        assert message_method(message) == "initialize"

    def test_only_nested_method(self):
        message = '{"jsonrpc":"2.0","id":2,"result":{"items":[{"method":"x"}]}}'
        assert message_method(message) is None

    def test_method_text_inside_string_value(self):
        message = r'{"params":{"text":"\"method\":\"initialize\""},"method":"shutdown"}'
        assert message_method(message) == "shutdown"

    def test_unframed_text(self):
        assert message_method("garbage") is None


# ---------------------------------------------------------------------------
# Bootstrap injection
# ---------------------------------------------------------------------------


class TestInjection:
    @pytest.mark.asyncio
    async def test_initialize_followed_by_solution_then_projects(self):
        pipeline = InterceptionPipeline(Workspace(solution=SOLUTION, projects=PROJECTS))
        out = await pipeline.process(INITIALIZE)

        assert out[0] == INITIALIZE
        assert len(out) == 3
        solution = json.loads(out[1])
        projects = json.loads(out[2])
        assert solution == {
            "jsonrpc": "2.0",
            "method": "solution/open",
            "params": {"solution": SOLUTION},
        }
        assert projects == {
            "jsonrpc": "2.0",
            "method": "project/open",
            "params": {"projects": list(PROJECTS)},
        }
        assert pipeline.state is SessionState.INITIALIZED

    @pytest.mark.asyncio
    async def test_no_solution_skips_solution_notification(self):
        pipeline = InterceptionPipeline(Workspace(projects=PROJECTS))
        out = await pipeline.process(INITIALIZE)
        assert len(out) == 2
        assert json.loads(out[1])["method"] == "project/open"

    @pytest.mark.asyncio
    async def test_project_notification_sent_even_when_empty(self):
        pipeline = InterceptionPipeline(Workspace())
        out = await pipeline.process(INITIALIZE)
        assert len(out) == 2
        assert json.loads(out[1])["params"] == {"projects": []}

    @pytest.mark.asyncio
    async def test_injection_happens_once(self):
        pipeline = InterceptionPipeline(Workspace(solution=SOLUTION))
        assert len(await pipeline.process(INITIALIZE)) == 3
        assert await pipeline.process(INITIALIZE) == [INITIALIZE]
        mention = '{"jsonrpc":"2.0","method":"window/logMessage","params":{"message":"initialize"}}'
        assert await pipeline.process(mention) == [mention]

    @pytest.mark.asyncio
    async def test_initialize_with_params_first(self):
        pipeline = InterceptionPipeline(Workspace(solution=SOLUTION, projects=PROJECTS))
        message = '{"jsonrpc":"2.0","id":0,"params":{"trace":{"method":"off"}},"method":"initialize"}'
        out = await pipeline.process(message)
        assert out[0] == message
        assert [json.loads(m)["method"] for m in out[1:]] == ["solution/open", "project/open"]
        assert pipeline.state is SessionState.INITIALIZED

    @pytest.mark.asyncio
    async def test_initialized_notification_does_not_trigger(self):
        pipeline = InterceptionPipeline(Workspace(solution=SOLUTION))
        assert await pipeline.process(INITIALIZED) == [INITIALIZED]
        assert pipeline.state is SessionState.UNINITIALIZED

    @pytest.mark.asyncio
    async def test_other_messages_pass_through(self):
        pipeline = InterceptionPipeline(Workspace())
        message = '{"jsonrpc":"2.0","id":3,"method":"textDocument/hover","params":{}}'
        assert await pipeline.process(message) == [message]


# ---------------------------------------------------------------------------
# Diagnostic range rewrite
# ---------------------------------------------------------------------------


class TestDiagnosticRewrite:
    @pytest.mark.asyncio
    async def test_whole_file_range(self, tmp_path: Path):
        source = tmp_path / "Program.cs"
        lines = [f"// line {i}" for i in range(9)] + ["}// end"]
        source.write_text("\n".join(lines))

        out = await InterceptionPipeline(Workspace()).process(_diagnostic_request(source.as_uri()))
        request = json.loads(out[0])

        assert request["id"] == 12
        assert request["method"] == "textDocument/diagnostic"
        assert request["params"]["textDocument"]["uri"] == source.as_uri()
        assert request["params"]["range"] == {
            "start": {"line": 0, "character": 0},
            "end": {"line": 10, "character": 7},
        }

    @pytest.mark.asyncio
    async def test_document_read_off_the_event_loop(self, tmp_path: Path, monkeypatch):
        threads: list[int] = []

        def record(message: str) -> str:
            threads.append(threading.get_ident())
            return message

        monkeypatch.setattr("roslynwrap.pipeline.enrich_diagnostic_request", record)
        message = _diagnostic_request((tmp_path / "A.cs").as_uri())
        assert await InterceptionPipeline(Workspace()).process(message) == [message]
        assert threads and threads[0] != threading.get_ident()

    def test_identifier_and_previous_result_id_dropped(self, tmp_path: Path):
        source = tmp_path / "A.cs"
        source.write_text("class A {}\n")
        message = _diagnostic_request(
            source.as_uri(), identifier="csharp", previousResultId="abc"
        )

        request = json.loads(enrich_diagnostic_request(message))
        assert "identifier" not in request["params"]
        assert "previousResultId" not in request["params"]
        assert request["params"]["range"]["end"] == {"line": 1, "character": 10}

    @pytest.mark.asyncio
    async def test_missing_file_passes_through_unchanged(self, tmp_path: Path):
        message = _diagnostic_request((tmp_path / "missing.cs").as_uri())
        assert await InterceptionPipeline(Workspace()).process(message) == [message]

    def test_non_file_uri_passes_through_unchanged(self):
        message = _diagnostic_request("untitled:Untitled-1")
        assert enrich_diagnostic_request(message) == message

    @pytest.mark.asyncio
    async def test_unparseable_request_passes_through_unchanged(self):
        message = '{"method":"textDocument/diagnostic", broken'
        assert await InterceptionPipeline(Workspace()).process(message) == [message]

    def test_missing_text_document_passes_through_unchanged(self):
        message = '{"jsonrpc":"2.0","id":1,"method":"textDocument/diagnostic","params":{}}'
        assert enrich_diagnostic_request(message) == message


class TestFileExtent:
    def test_trailing_newline_does_not_add_line(self, tmp_path: Path):
        f = tmp_path / "a.cs"
        f.write_bytes(b"one\ntwo\n")
        assert file_extent(f) == (2, 3)

    def test_mixed_line_endings(self, tmp_path: Path):
        f = tmp_path / "a.cs"
        f.write_bytes(b"one\r\ntwo\rthree\nfour")
        assert file_extent(f) == (4, 4)

    def test_empty_file(self, tmp_path: Path):
        f = tmp_path / "a.cs"
        f.write_bytes(b"")
        assert file_extent(f) == (0, 0)

    def test_bom_is_not_counted(self, tmp_path: Path):
        f = tmp_path / "a.cs"
        f.write_bytes(b"\xef\xbb\xbfabc")
        assert file_extent(f) == (1, 3)

    def test_length_in_utf16_units(self, tmp_path: Path):
        f = tmp_path / "a.cs"
        f.write_text("x = \"\U0001F600\"", encoding="utf-8")
        # The emoji is one code point but two UTF-16 code units.
        assert file_extent(f) == (1, 8)

    def test_uri_to_path_round_trip(self, tmp_path: Path):
        f = tmp_path / "with space.cs"
        assert uri_to_path(f.as_uri()) == f
