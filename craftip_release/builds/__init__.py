"""Build orchestration module.

This module handles:
- Cross builds inside the ephemeral build container
- Cache key computation for the server image
- Two-phase server image builds
- Artifact discovery and manifest generation
"""

from craftip_release.builds.runner import BuildExecutionError, BuildResult

__all__ = ["BuildExecutionError", "BuildResult"]

# Lazy imports for submodules to avoid circular imports
# Access via craftip_release.builds.orchestrator, etc.
