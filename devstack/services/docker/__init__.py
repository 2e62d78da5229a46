"""
Docker build services.

This package contains the decomposed image build pipeline:
- archive_service: Build context archiving
- build_stream: Build stream line classification
- DockerBuildService: Build submission and stream handling
"""
from devstack.services.docker.archive_service import build_archive, create_archive
from devstack.services.docker.build_service import BuildOptions, DockerBuildService
from devstack.services.docker.build_stream import StageEvent, classify

__all__ = [
    "BuildOptions",
    "DockerBuildService",
    "StageEvent",
    "build_archive",
    "classify",
    "create_archive",
]
