"""Tool specification models, compiler and workflow graph ordering."""

from toolsmith.spec.models import ToolSpecification
from toolsmith.spec.compiler import (
    ArtifactCache,
    CompiledArtifact,
    ValidationReport,
    compile_spec,
    spec_hash,
    validate_spec,
)
from toolsmith.spec.graph import topological_order

__all__ = [
    "ArtifactCache",
    "CompiledArtifact",
    "ToolSpecification",
    "ValidationReport",
    "compile_spec",
    "spec_hash",
    "topological_order",
    "validate_spec",
]
