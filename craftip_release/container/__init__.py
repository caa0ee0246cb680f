"""Container runtime module.

This module handles:
- Invoking the container CLI
- The lifecycle of the long-lived build container
"""

from craftip_release.container.lifecycle import BuildContainer, ContainerStateError
from craftip_release.container.runtime import ContainerCommandError

__all__ = ["BuildContainer", "ContainerCommandError", "ContainerStateError"]
