"""Max and average pooling kernels."""

import torch
import torch.nn.functional as F

from ..ir import ShapeSpec
from ..shapes import pool_out_length
from .base import Layer


def _pooled_shape(in_shape: ShapeSpec, pool_size: int, stride: int) -> ShapeSpec:
    return ShapeSpec(
        width=pool_out_length(in_shape.width, pool_size, stride),
        height=pool_out_length(in_shape.height, pool_size, stride),
        depth=in_shape.depth,
    )


class MaxPoolingLayer(Layer):
    layer_type = "max-pool"

    def __init__(self, in_shape: ShapeSpec, pool_size: int, stride: int,
                 dtype: torch.dtype = torch.float32):
        super().__init__(in_shape, _pooled_shape(in_shape, pool_size, stride), dtype)
        self.pool_size = pool_size
        self.stride = stride

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return F.max_pool2d(x, self.pool_size, self.stride)

    def extra_repr(self) -> str:
        return f"{super().extra_repr()}, pool={self.pool_size}, stride={self.stride}"


class AveragePoolingLayer(Layer):
    """
    Average pooling with a trainable per-channel scale and bias.

    The window sum is multiplied by ``weight[c]`` and shifted by ``bias[c]``;
    plain averaging is weight = 1/pool_size**2, bias = 0.
    """

    layer_type = "ave-pool"

    def __init__(self, in_shape: ShapeSpec, pool_size: int, stride: int,
                 dtype: torch.dtype = torch.float32):
        super().__init__(in_shape, _pooled_shape(in_shape, pool_size, stride), dtype)
        self.pool_size = pool_size
        self.stride = stride
        self.weight = self._parameter(in_shape.depth)
        self.bias = self._parameter(in_shape.depth)
        self.fill_average()

    def fill_average(self):
        """Reset to plain averaging: weight 1/pool_size**2, bias 0."""
        with torch.no_grad():
            self.weight.fill_(1.0 / self.pool_size ** 2)
            self.bias.zero_()

    def fan_in_size(self) -> int:
        return self.pool_size ** 2

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        window_sum = F.avg_pool2d(x, self.pool_size, self.stride) * self.pool_size ** 2
        return window_sum * self.weight.view(1, -1, 1, 1) + self.bias.view(1, -1, 1, 1)

    def extra_repr(self) -> str:
        return f"{super().extra_repr()}, pool={self.pool_size}, stride={self.stride}"
