"""Collaborator contracts and the adapters shipped with the engine."""

from circuitforge_repair.integration_plane.collaborators import (
    CollaboratorUnavailableError,
    CompileContext,
    CompiledCircuit,
    CompileFailure,
    CompileOutcome,
    DesignCompiler,
    DesignReviewer,
    DesignReviser,
    ManufacturingPreview,
    ReviewReport,
    SessionRecord,
    SessionStore,
)
from circuitforge_repair.integration_plane.command_compiler import (
    CommandCompiler,
    CommandPreview,
    PreviewCommandError,
    parse_compile_output,
    parse_preview_output,
)
from circuitforge_repair.integration_plane.session_store import InMemorySessionStore

__all__ = [
    "CollaboratorUnavailableError",
    "CommandCompiler",
    "CommandPreview",
    "CompileContext",
    "CompileFailure",
    "CompileOutcome",
    "CompiledCircuit",
    "DesignCompiler",
    "DesignReviewer",
    "DesignReviser",
    "InMemorySessionStore",
    "ManufacturingPreview",
    "PreviewCommandError",
    "ReviewReport",
    "SessionRecord",
    "SessionStore",
    "parse_compile_output",
    "parse_preview_output",
]
