from testtrack.models.assignment import Assignment, VisitorLike, is_feature_gate
from testtrack.models.split_registry import SplitRegistry
from testtrack.models.visitor import Visitor

__all__ = [
    "Assignment",
    "SplitRegistry",
    "Visitor",
    "VisitorLike",
    "is_feature_gate",
]
