"""Descriptor-side data model: layer records, weight blobs and tensor shapes."""

from typing import Any, Dict, List, Mapping, Optional, Tuple
from dataclasses import dataclass, field
from enum import Enum

import numpy as np

BlobRef = str
ParamBag = Mapping[str, Any]


class LayerKind(Enum):
    """Layer kinds the converter can materialize."""
    CONVOLUTION = "Convolution"
    DECONVOLUTION = "Deconvolution"
    INNER_PRODUCT = "InnerProduct"
    POOLING = "Pooling"
    LRN = "LRN"
    DROPOUT = "Dropout"
    BATCH_NORM = "BatchNorm"
    SOFTMAX = "Softmax"
    SOFTMAX_WITH_LOSS = "SoftmaxWithLoss"
    SIGMOID = "Sigmoid"
    SIGMOID_CROSS_ENTROPY_LOSS = "SigmoidCrossEntropyLoss"
    RELU = "ReLU"
    TANH = "TanH"

    @property
    def is_activation(self) -> bool:
        """Kinds materialized as shape-preserving activation nodes."""
        return self in _ACTIVATION_KINDS

    @classmethod
    def parse(cls, type_name: str) -> Optional["LayerKind"]:
        """Return the kind for a descriptor type string, or None."""
        try:
            return cls(type_name)
        except ValueError:
            return None


_ACTIVATION_KINDS = frozenset({
    LayerKind.SOFTMAX,
    LayerKind.SOFTMAX_WITH_LOSS,
    LayerKind.SIGMOID,
    LayerKind.SIGMOID_CROSS_ENTROPY_LOSS,
    LayerKind.RELU,
    LayerKind.TANH,
})


@dataclass(frozen=True)
class ShapeSpec:
    """Shape of a tensor at a graph edge (batch dimension excluded)."""
    width: int
    height: int
    depth: int

    def __post_init__(self):
        for dim in (self.width, self.height, self.depth):
            if dim < 0:
                raise ValueError(f"negative dimension in {self!r}")

    def size(self) -> int:
        return self.width * self.height * self.depth

    def area(self) -> int:
        return self.width * self.height

    def to_nchw(self) -> Tuple[int, int, int]:
        """Dimensions in the (channels, height, width) order torch expects."""
        return (self.depth, self.height, self.width)

    def __str__(self) -> str:
        return f"{self.width}x{self.height}x{self.depth}"


@dataclass(frozen=True, eq=False)
class WeightBlob:
    """Flat pretrained array plus the dimensionality it was stored with."""
    data: np.ndarray
    shape: Tuple[int, ...] = ()

    def __post_init__(self):
        flat = np.ascontiguousarray(self.data, dtype=np.float32).reshape(-1)
        object.__setattr__(self, "data", flat)
        if not self.shape:
            object.__setattr__(self, "shape", (flat.size,))

    @property
    def count(self) -> int:
        return int(self.data.size)


@dataclass(frozen=True)
class FillerSpec:
    """Weight-initializer reference as written in the descriptor."""
    type: str = "constant"
    value: float = 0.0
    min: float = 0.0
    max: float = 1.0
    mean: float = 0.0
    std: float = 1.0
    variance_norm: str = "FAN_IN"  # FAN_IN | FAN_OUT | AVERAGE


@dataclass(frozen=True)
class LayerDescriptor:
    """One decoded layer record. Read-only to the converter."""
    name: str
    type: str
    bottom: Tuple[BlobRef, ...] = ()
    top: Tuple[BlobRef, ...] = ()
    params: Dict[str, ParamBag] = field(default_factory=dict)  # e.g. {"convolution_param": {...}}
    blobs: Tuple[WeightBlob, ...] = ()

    @property
    def kind(self) -> Optional[LayerKind]:
        return LayerKind.parse(self.type)

    @property
    def input_ref(self) -> Optional[BlobRef]:
        return self.bottom[0] if self.bottom else None

    @property
    def output_ref(self) -> BlobRef:
        return self.top[0] if self.top else self.name

    def param(self, bag_name: str) -> Optional[ParamBag]:
        return self.params.get(bag_name)


@dataclass(frozen=True)
class NetDescriptor:
    """A decoded network: declared input shapes and layers in order."""
    name: str = ""
    inputs: Dict[BlobRef, ShapeSpec] = field(default_factory=dict)
    layers: List[LayerDescriptor] = field(default_factory=list)
