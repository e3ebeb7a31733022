"""Save-time checks, commit gating and codegen orchestration for Convex projects."""

__version__ = "0.1.0"
