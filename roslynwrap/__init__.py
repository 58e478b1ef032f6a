"""roslynwrap: LSP proxy that bootstraps the Roslyn language server."""

from roslynwrap.framing import FrameDecoder, encode_message
from roslynwrap.pipeline import InterceptionPipeline, SessionState
from roslynwrap.supervisor import ProcessSupervisor, run_proxy
from roslynwrap.workspace import Workspace, discover_workspace

__version__ = "0.1.0"

__all__ = [
    "FrameDecoder",
    "InterceptionPipeline",
    "ProcessSupervisor",
    "SessionState",
    "Workspace",
    "discover_workspace",
    "encode_message",
    "run_proxy",
]
