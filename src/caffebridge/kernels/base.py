"""Common base for layer-execution kernels."""

from typing import Optional, Tuple

import torch
import torch.nn as nn

from ..fillers import DEFAULT_BIAS_FILLER, DEFAULT_WEIGHT_FILLER, get_registry
from ..ir import FillerSpec, ShapeSpec


class Layer(nn.Module):
    """
    A sized kernel with exclusively owned weight tensors.

    Subclasses allocate ``weight``/``bias`` (or leave them None) in their
    constructor; the converter fills them once and treats them as immutable
    afterwards.
    """

    layer_type = "layer"

    def __init__(self, in_shape: ShapeSpec, out_shape: ShapeSpec, dtype: torch.dtype = torch.float32):
        super().__init__()
        self.in_shape = in_shape
        self.out_shape = out_shape
        self.dtype = dtype
        self.register_parameter("weight", None)
        self.register_parameter("bias", None)

    def weights(self) -> Tuple[Optional[torch.Tensor], Optional[torch.Tensor]]:
        """The (weight, bias) pair; either entry may be None."""
        return self.weight, self.bias

    def _parameter(self, *shape: int) -> nn.Parameter:
        return nn.Parameter(torch.zeros(*shape, dtype=self.dtype))

    def fan_in_size(self) -> int:
        return 1

    def fan_out_size(self) -> int:
        return 1

    def init_weight(self,
                    weight_filler: Optional[FillerSpec] = None,
                    bias_filler: Optional[FillerSpec] = None,
                    generator: Optional[torch.Generator] = None):
        """
        Initialize owned tensors from filler specs.

        Args:
            weight_filler: Filler for the weight tensor (xavier when None)
            bias_filler: Filler for the bias tensor (constant 0 when None)
            generator: Optional generator for reproducible random fills
        """
        registry = get_registry()
        fan_in, fan_out = self.fan_in_size(), self.fan_out_size()
        if self.weight is not None:
            filler = registry.create(weight_filler or DEFAULT_WEIGHT_FILLER)
            filler.fill(self.weight.data, fan_in, fan_out, generator)
        if self.bias is not None:
            filler = registry.create(bias_filler or DEFAULT_BIAS_FILLER)
            filler.fill(self.bias.data, fan_in, fan_out, generator)

    def extra_repr(self) -> str:
        return f"in={self.in_shape}, out={self.out_shape}"
