from pkghub.catalog.builder import BuildStats, CatalogBuilder
from pkghub.catalog.coordinator import RebuildCoordinator, RebuildOutcome, RebuildState

__all__ = [
    "BuildStats",
    "CatalogBuilder",
    "RebuildCoordinator",
    "RebuildOutcome",
    "RebuildState",
]
