"""Conversion output: an ordered sequence of sized, filled layer nodes."""

from typing import Dict, Iterator, List, Optional, Tuple, Union
from dataclasses import dataclass, field

import torch
import torch.nn as nn

from .ir import LayerKind, ShapeSpec
from .kernels import Layer


@dataclass
class LayerNode:
    """A constructed kernel plus the descriptor facts it was built from."""
    name: str
    kind: LayerKind
    kernel: Layer
    position: int = 0  # index of the source descriptor

    @property
    def in_shape(self) -> ShapeSpec:
        return self.kernel.in_shape

    @property
    def out_shape(self) -> ShapeSpec:
        return self.kernel.out_shape

    @property
    def layer_type(self) -> str:
        return self.kernel.layer_type

    @property
    def weights(self) -> Tuple[Optional[torch.Tensor], Optional[torch.Tensor]]:
        return self.kernel.weights()

    def signature(self) -> Tuple:
        """Structural identity: kind, kernel type, shapes and tensor sizes."""
        sizes = tuple(None if t is None else tuple(t.shape) for t in self.weights)
        return (self.name, self.kind, self.layer_type, self.in_shape, self.out_shape, sizes)


@dataclass
class Graph:
    """Ordered layer nodes produced by one conversion."""
    nodes: List[LayerNode] = field(default_factory=list)
    name: str = ""

    def __len__(self) -> int:
        return len(self.nodes)

    def __iter__(self) -> Iterator[LayerNode]:
        return iter(self.nodes)

    def __getitem__(self, key: Union[int, str]) -> LayerNode:
        if isinstance(key, int):
            return self.nodes[key]
        for node in self.nodes:
            if node.name == key:
                return node
        raise KeyError(key)

    @property
    def in_shape(self) -> Optional[ShapeSpec]:
        return self.nodes[0].in_shape if self.nodes else None

    @property
    def out_shape(self) -> Optional[ShapeSpec]:
        return self.nodes[-1].out_shape if self.nodes else None

    def structure(self) -> List[Tuple]:
        return [node.signature() for node in self.nodes]

    def summary(self) -> Dict[str, int]:
        """Count of nodes per kernel type."""
        summary = {}
        for node in self.nodes:
            summary[node.layer_type] = summary.get(node.layer_type, 0) + 1
        return summary

    def to_module(self) -> nn.Sequential:
        """The kernels chained in order, for inputs shaped (N, C, H, W)."""
        return nn.Sequential(*[node.kernel for node in self.nodes])


def format_graph(graph: Graph) -> str:
    """Render the graph as a table for debugging."""
    lines = ["=" * 60, f"Graph {graph.name}".rstrip(), "=" * 60]
    for node in graph.nodes:
        lines.append(f"  [{node.position}] {node.name}: {node.layer_type} "
                     f"{node.in_shape} -> {node.out_shape}")
    lines.append("=" * 60)
    return "\n".join(lines)
