"""Interception of client-to-server messages."""

from __future__ import annotations

import asyncio
import logging
import re
from enum import Enum

from roslynwrap.diagnostics import enrich_diagnostic_request
from roslynwrap.schema import OpenProjectNotification, OpenSolutionNotification, serialize
from roslynwrap.workspace import Workspace

logger = logging.getLogger(__name__)

INITIALIZE_METHOD = "initialize"
DIAGNOSTIC_METHOD = "textDocument/diagnostic"

# Strings and brackets, enough to know how deep a key sits.
_TOKEN = re.compile(r'"(?:[^"\\]|\\.)*"|[{}\[\]]')
_STRING_VALUE = re.compile(r'\s*:\s*"((?:[^"\\]|\\.)*)"')


class SessionState(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"


def message_method(message: str) -> str | None:
    """Return the top-level ``"method"`` value, if any.

    Nested ``"method"`` keys (inside ``params`` for example) are ignored,
    whatever the key order. The value is returned as written on the wire,
    so escape sequences are not decoded.
    """
    depth = 0
    for token in _TOKEN.finditer(message):
        text = token.group()
        if text in "{[":
            depth += 1
        elif text in "}]":
            depth -= 1
        elif depth == 1 and text == '"method"':
            value = _STRING_VALUE.match(message, token.end())
            if value:
                return value.group(1)
    return None


class InterceptionPipeline:
    """Per-session rewrite and injection of client messages.

    :meth:`process` turns one decoded client message into the ordered list
    of messages to send to the server: the message itself (possibly
    rewritten), followed by the workspace bootstrap notifications right
    after the first ``initialize`` request.
    """

    def __init__(self, workspace: Workspace) -> None:
        self.workspace = workspace
        self.state = SessionState.UNINITIALIZED

    async def process(self, message: str) -> list[str]:
        method = message_method(message)

        if method == DIAGNOSTIC_METHOD:
            # Reads the document from disk.
            message = await asyncio.to_thread(enrich_diagnostic_request, message)

        outbound = [message]

        if self.state is SessionState.UNINITIALIZED and method == INITIALIZE_METHOD:
            self.state = SessionState.INITIALIZED
            outbound.extend(self.bootstrap_notifications())

        return outbound

    def bootstrap_notifications(self) -> list[str]:
        notifications: list[str] = []
        if self.workspace.solution:
            notifications.append(serialize(OpenSolutionNotification(self.workspace.solution)))
        notifications.append(serialize(OpenProjectNotification(list(self.workspace.projects))))
        logger.info(
            "Injecting workspace bootstrap (%d notification(s))", len(notifications)
        )
        return notifications
