"""Pipeline domain - staged build from source files to a published rule set."""

from .service import BuildStage, BuildResult, RulePipeline, write_outputs, build_rules

__all__ = [
    "BuildStage",
    "BuildResult",
    "RulePipeline",
    "write_outputs",
    "build_rules",
]
