"""
Opzenix - CI/CD execution control plane.

Backend service for pipeline executions, checkpoints, deployments, approvals
and supply-chain evidence, with a realtime change feed for dashboard clients.
"""

__version__ = "0.1.0"
__author__ = "Opzenix Team"
__description__ = "CI/CD execution control plane"

from .core.config import OpzenixConfig

__all__ = [
    "__version__",
    "__author__",
    "__description__",
    "OpzenixConfig",
]
