"""Host configuration over SSH: run ordered control actions against one machine."""

from .runner import ControlRunner, run_control
from .script import ScriptLoader, load_script
from .types import ActionOutcome, ControlScript, RunResult

__all__ = [
    "ControlRunner",
    "run_control",
    "ScriptLoader",
    "load_script",
    "ActionOutcome",
    "ControlScript",
    "RunResult",
]
