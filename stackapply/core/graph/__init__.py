from .loader import build_graph, load_graph
from .models import Reference, ResourceAddress, ResourceGraph, ResourceNode
from .resolver import descendants, topological_order

__all__ = [
    "Reference",
    "ResourceAddress",
    "ResourceGraph",
    "ResourceNode",
    "build_graph",
    "descendants",
    "load_graph",
    "topological_order",
]
