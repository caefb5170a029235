"""appship: mobile app build, repair and packaging pipeline.

Resolves one immutable build configuration from layered variable sources,
rewrites target-scoped settings in an Xcode project manifest, repairs bundle
identifier collisions inside the built app, assembles the ``.ipa`` package
and hands it to the uploader:

  - Precedence-ordered config resolution (empty values count as absent)
  - Lossless, target-scoped ``project.pbxproj`` mutation
  - Deterministic nested bundle identifier repair
  - Archive discovery with structural repair, size-checked packaging
  - Per-stage fatal/advisory policy with one notification per run
"""

__version__ = "0.1.0"
__description__ = "Mobile app build, manifest repair and packaging pipeline"

from appship.core.orchestrator import PipelineOrchestrator
from appship.cli.app import app as cli

__all__ = ["PipelineOrchestrator", "cli", "__version__"]
