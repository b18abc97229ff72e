"""Shape-preserving kernels: activations and dropout."""

import torch
import torch.nn.functional as F

from ..ir import ShapeSpec
from .base import Layer

ACTIVATION_FUNCTIONS = ("softmax", "sigmoid", "relu", "tanh")


class ActivationLayer(Layer):
    """Identity-sized node applying one activation function."""

    layer_type = "activation"

    def __init__(self, in_shape: ShapeSpec, function: str, negative_slope: float = 0.0,
                 dtype: torch.dtype = torch.float32):
        if function not in ACTIVATION_FUNCTIONS:
            raise ValueError(f"unknown activation function '{function}'")
        super().__init__(in_shape, in_shape, dtype)
        self.function = function
        self.negative_slope = negative_slope

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        if self.function == "softmax":
            return F.softmax(x, dim=1)
        if self.function == "sigmoid":
            return torch.sigmoid(x)
        if self.function == "tanh":
            return torch.tanh(x)
        if self.negative_slope:
            return F.leaky_relu(x, self.negative_slope)
        return F.relu(x)

    def extra_repr(self) -> str:
        return f"{super().extra_repr()}, function={self.function}"


class DropoutLayer(Layer):
    """Dropout, constructed in inference mode (identity until ``train()``)."""

    layer_type = "dropout"

    def __init__(self, in_shape: ShapeSpec, rate: float = 0.5,
                 dtype: torch.dtype = torch.float32):
        super().__init__(in_shape, in_shape, dtype)
        self.rate = rate
        self.eval()

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return F.dropout(x, self.rate, training=self.training)

    def extra_repr(self) -> str:
        return f"{super().extra_repr()}, rate={self.rate}"
