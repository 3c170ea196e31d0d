"""Wheelforge: release orchestration for native Python extension wheels.

Fans out one build per (platform family, architecture) target, joins the
results behind an all-or-nothing barrier, signs a provenance attestation
over the complete bundle set, and publishes to a package index only when
the trigger permits it.
"""

__version__ = "0.1.0"
__description__ = "Build, attest and publish native Python wheels across a platform matrix"

from wheelforge.core.orchestrator import ReleaseOrchestrator
from wheelforge.cli.app import app as cli

__all__ = ["ReleaseOrchestrator", "cli", "__version__"]
