"""
Orchestrator - Agent orchestration core

Runs the model-turn/tool-dispatch loop, owns the tool registry and
bridges to tools that execute inside out-of-process sandboxes.

Tools import orchestrator.errors, so submodules are imported explicitly
(orchestrator.session, orchestrator.react_loop, ...) rather than here.
"""
