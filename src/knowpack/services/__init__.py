"""Service layer orchestrating the knowpack pipeline."""

from .assembly import AssemblyConfig, ContextAssemblyService

__all__ = ["AssemblyConfig", "ContextAssemblyService"]
