"""Services layer: filtering and drafting entry points."""

from litrev.services.filtering import FilterResult, SemanticFilterEngine
from litrev.services.generation import DraftGenerator, DraftResult

__all__ = [
    "DraftGenerator",
    "DraftResult",
    "FilterResult",
    "SemanticFilterEngine",
]
