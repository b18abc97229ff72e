"""Local response normalization and batch normalization kernels."""

from typing import Tuple

import torch
import torch.nn.functional as F

from ..ir import ShapeSpec
from .base import Layer


class LRNLayer(Layer):
    """Local response normalization across channels or within each channel."""

    layer_type = "lrn"

    def __init__(self, in_shape: ShapeSpec, local_size: int, alpha: float, beta: float,
                 k: float = 1.0, within_channel: bool = False,
                 dtype: torch.dtype = torch.float32):
        super().__init__(in_shape, in_shape, dtype)
        self.local_size = local_size
        self.alpha = alpha
        self.beta = beta
        self.k = k
        self.within_channel = within_channel

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        if not self.within_channel:
            return F.local_response_norm(x, self.local_size, self.alpha, self.beta, self.k)
        # mean of squares over a local_size x local_size spatial window
        squares = F.avg_pool2d(x * x, self.local_size, stride=1,
                               padding=self.local_size // 2, count_include_pad=True)
        return x / (self.k + self.alpha * squares).pow(self.beta)

    def extra_repr(self) -> str:
        region = "within_channel" if self.within_channel else "across_channels"
        return (f"{super().extra_repr()}, size={self.local_size}, alpha={self.alpha}, "
                f"beta={self.beta}, k={self.k}, region={region}")


class BatchNormalizationLayer(Layer):
    """
    Inference-mode batch normalization from stored running statistics.

    Holds no learned scale or shift; ``running_mean`` and ``running_var`` are
    buffers with one entry per channel.
    """

    layer_type = "batch-norm"

    def __init__(self, in_shape: ShapeSpec, epsilon: float = 1e-5, momentum: float = 0.999,
                 dtype: torch.dtype = torch.float32):
        super().__init__(in_shape, in_shape, dtype)
        self.channels = in_shape.depth
        self.epsilon = epsilon
        self.momentum = momentum
        self.register_buffer("running_mean", torch.zeros(self.channels, dtype=dtype))
        self.register_buffer("running_var", torch.ones(self.channels, dtype=dtype))

    def set_statistics(self, mean: torch.Tensor, variance: torch.Tensor):
        with torch.no_grad():
            self.running_mean.copy_(mean)
            self.running_var.copy_(variance)

    def statistics(self) -> Tuple[torch.Tensor, torch.Tensor]:
        return self.running_mean, self.running_var

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return F.batch_norm(x, self.running_mean, self.running_var,
                            training=False, eps=self.epsilon)

    def extra_repr(self) -> str:
        return f"{super().extra_repr()}, eps={self.epsilon}, momentum={self.momentum}"
