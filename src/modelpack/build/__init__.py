"""
Model image build pipeline.

Components:
    - ModelImageBuilder: Orchestrates unified or split weights builds
    - IgnoreFileState: Scoped .dockerignore backup and restore
    - WeightsManifest: Content hashes deciding weights image reuse
    - LabelAssembler: Final image labels, including base image lineage

Usage:
    from modelpack.build.orchestrator import ModelImageBuilder
    from modelpack.models import BuildRequest, ProjectConfig
"""

__all__ = []
