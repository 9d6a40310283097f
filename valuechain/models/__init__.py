from valuechain.models.base import Base
from valuechain.models.value_chain_area import ValueChainArea
from valuechain.models.value_chain_edge import ValueChainEdge
from valuechain.models.value_chain_map import ValueChainMap
from valuechain.models.value_chain_node import NodeType, ValueChainNode

__all__ = [
    "Base",
    "NodeType",
    "ValueChainMap",
    "ValueChainArea",
    "ValueChainNode",
    "ValueChainEdge",
]
