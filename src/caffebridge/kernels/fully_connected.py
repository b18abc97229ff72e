"""Fully-connected kernel."""

import torch

from ..ir import ShapeSpec
from .base import Layer


class FullyConnectedLayer(Layer):
    """
    Dense layer over the flattened input.

    Weights are stored input-major as (in, out), so ``y = x @ W + b``.
    """

    layer_type = "fully-connected"

    def __init__(self, in_shape: ShapeSpec, out_size: int, has_bias: bool = True,
                 dtype: torch.dtype = torch.float32):
        super().__init__(in_shape, ShapeSpec(1, 1, out_size), dtype)
        self.in_size = in_shape.size()
        self.out_size = out_size
        self.has_bias = has_bias
        self.weight = self._parameter(self.in_size, out_size)
        if has_bias:
            self.bias = self._parameter(out_size)

    def fan_in_size(self) -> int:
        return self.in_size

    def fan_out_size(self) -> int:
        return self.out_size

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        y = x.reshape(x.shape[0], -1) @ self.weight
        if self.bias is not None:
            y = y + self.bias
        return y
