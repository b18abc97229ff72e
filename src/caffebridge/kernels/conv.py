"""Convolution and deconvolution kernels."""

from typing import Optional, Tuple

import torch
import torch.nn.functional as F

from ..connection import ConnectionTable
from ..ir import ShapeSpec
from ..shapes import conv_out_length, deconv_out_length
from .base import Layer


class ConvolutionBase(Layer):

    def __init__(self,
                 in_shape: ShapeSpec,
                 window_size: int,
                 out_channels: int,
                 table: Optional[ConnectionTable] = None,
                 same_padding: bool = False,
                 has_bias: bool = True,
                 stride: int = 1,
                 dtype: torch.dtype = torch.float32):
        in_channels = in_shape.depth
        table = table or ConnectionTable(1, in_channels, out_channels)
        out_shape = ShapeSpec(
            width=self._out_length(in_shape.width, window_size, stride, same_padding),
            height=self._out_length(in_shape.height, window_size, stride, same_padding),
            depth=out_channels,
        )
        super().__init__(in_shape, out_shape, dtype)
        self.window_size = window_size
        self.in_channels = in_channels
        self.out_channels = out_channels
        self.table = table
        self.same_padding = same_padding
        self.stride = stride
        self.pad = (window_size - 1) // 2 if same_padding else 0
        self.has_bias = has_bias
        if has_bias:
            self.bias = self._parameter(out_channels)

    @staticmethod
    def _out_length(in_length: int, window_size: int, stride: int, same: bool) -> int:
        raise NotImplementedError

    @property
    def groups(self) -> int:
        return self.table.groups

    def block_index(self, o, i) -> Tuple:
        """Leading weight index of the block connecting input ``i`` to output ``o``.

        ``o`` and ``i`` may be ints or equal-length index tensors.
        """
        raise NotImplementedError

    def weight_block(self, o: int, i: int) -> torch.Tensor:
        """(k, k) view of the weights connecting input ``i`` to output ``o``."""
        return self.weight.data[self.block_index(o, i)]

    def extra_repr(self) -> str:
        return (f"{super().extra_repr()}, kernel={self.window_size}, stride={self.stride}, "
                f"pad={self.pad}, groups={self.groups}, bias={self.has_bias}")


class ConvolutionalLayer(ConvolutionBase):
    """2-D convolution; weights stored as (out, in / groups, k, k)."""

    layer_type = "conv"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        k = self.window_size
        self.weight = self._parameter(self.out_channels, self.table.in_per_group, k, k)

    @staticmethod
    def _out_length(in_length, window_size, stride, same):
        return conv_out_length(in_length, window_size, stride, same)

    def fan_in_size(self) -> int:
        return self.table.in_per_group * self.window_size ** 2

    def fan_out_size(self) -> int:
        return self.out_channels * self.window_size ** 2

    def block_index(self, o, i) -> Tuple:
        return o, i % self.table.in_per_group

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return F.conv2d(x, self.weight, self.bias, stride=self.stride,
                        padding=self.pad, groups=self.groups)


class DeconvolutionalLayer(ConvolutionBase):
    """2-D transposed convolution; weights stored as (in, out / groups, k, k)."""

    layer_type = "deconv"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        k = self.window_size
        self.weight = self._parameter(self.in_channels, self.table.out_per_group, k, k)

    @staticmethod
    def _out_length(in_length, window_size, stride, same):
        return deconv_out_length(in_length, window_size, stride, same)

    def fan_in_size(self) -> int:
        return self.table.out_per_group * self.window_size ** 2

    def fan_out_size(self) -> int:
        return self.in_channels * self.window_size ** 2

    def block_index(self, o, i) -> Tuple:
        return i, o % self.table.out_per_group

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return F.conv_transpose2d(x, self.weight, self.bias, stride=self.stride,
                                  padding=self.pad, groups=self.groups)
