"""
System scaling services.

- ScaleService: Instance count management
- DependencyService: Dependency start-up and exported environments
"""
from devstack.services.system.system_base import Manifest, Scalable, ScaleOptions, System
from devstack.services.system.dependency_service import DependencyService
from devstack.services.system.scale_service import ScaleService

__all__ = [
    "DependencyService",
    "Manifest",
    "ScaleOptions",
    "ScaleService",
    "Scalable",
    "System",
]
