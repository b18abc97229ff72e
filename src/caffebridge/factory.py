"""Layer factory: descriptor + propagated shape -> sized, filled kernel."""

from typing import Callable, Dict, Optional
import logging
import warnings

import torch

from .connection import ConnectionTable
from .errors import UnsupportedLayer, UnsupportedShape
from .graph import LayerNode
from .ir import LayerDescriptor, LayerKind, ShapeSpec
from .kernels import (
    ActivationLayer,
    AveragePoolingLayer,
    BatchNormalizationLayer,
    ConvolutionalLayer,
    DeconvolutionalLayer,
    DropoutLayer,
    FullyConnectedLayer,
    Layer,
    LRNLayer,
    MaxPoolingLayer,
)
from .params import (
    ActivationParams,
    BatchNormParams,
    CanonicalParams,
    ConvolutionParams,
    DropoutParams,
    InnerProductParams,
    LRNParams,
    NormRegion,
    PadMode,
    PoolingParams,
    PoolMethod,
    canonicalize,
)
from .shapes import ShapeTable
from .transcode import load_weights

logger = logging.getLogger(__name__)


class LayerFactory:
    """
    Constructs one kernel per supported descriptor.

    A factory serves a single conversion: it shares that conversion's
    random generator but keeps no per-layer state.
    """

    def __init__(self,
                 dtype: torch.dtype = torch.float32,
                 generator: Optional[torch.Generator] = None,
                 check_unconnected_weights: bool = False):
        """
        Initialize factory.

        Args:
            dtype: Dtype of every allocated tensor
            generator: Random generator used by fillers
            check_unconnected_weights: Require positionally skipped weight
                blocks to be zero when transcoding grouped layers
        """
        self.dtype = dtype
        self.generator = generator
        self.check_unconnected_weights = check_unconnected_weights

    def create(self, descriptor: LayerDescriptor, shapes: ShapeTable, position: int = 0) -> LayerNode:
        """
        Build the node for ``descriptor`` and register its output shape.

        Args:
            descriptor: Layer record of a supported kind
            shapes: Shape table of the running conversion
            position: Index of the descriptor in its sequence

        Returns:
            The constructed node
        """
        kind = descriptor.kind
        if kind is None:
            raise UnsupportedLayer(f"layer type '{descriptor.type}' is not supported")

        params = canonicalize(descriptor)
        bottom = shapes.lookup(descriptor.input_ref)
        kernel = _BUILDERS[kind](self, params, bottom)

        if kernel.out_shape.size() == 0:
            raise UnsupportedShape(f"input {bottom} yields an empty output {kernel.out_shape}")

        if descriptor.blobs:
            load_weights(descriptor, kernel, params, self.check_unconnected_weights)
        else:
            self._fill(kernel, params)

        shapes.register(descriptor.output_ref, kernel.out_shape)
        logger.debug("built %s '%s' (%s): %s -> %s", kernel.layer_type, descriptor.name,
                     "pretrained" if descriptor.blobs else "filled", bottom, kernel.out_shape)
        return LayerNode(name=descriptor.name, kind=kind, kernel=kernel, position=position)

    def _fill(self, kernel: Layer, params: CanonicalParams):
        if isinstance(params, (ConvolutionParams, InnerProductParams)):
            kernel.init_weight(params.weight_filler, params.bias_filler, self.generator)

    def create_convolution(self, params: ConvolutionParams, bottom: ShapeSpec) -> Layer:
        return self._convolution(ConvolutionalLayer, params, bottom)

    def create_deconvolution(self, params: ConvolutionParams, bottom: ShapeSpec) -> Layer:
        return self._convolution(DeconvolutionalLayer, params, bottom)

    def _convolution(self, layer_cls, params: ConvolutionParams, bottom: ShapeSpec) -> Layer:
        table = ConnectionTable(params.groups, bottom.depth, params.out_channels)
        return layer_cls(
            bottom,
            params.kernel,
            params.out_channels,
            table=table,
            same_padding=params.pad_mode is PadMode.SAME,
            has_bias=params.has_bias,
            stride=params.stride,
            dtype=self.dtype,
        )

    def create_fully_connected(self, params: InnerProductParams, bottom: ShapeSpec) -> Layer:
        return FullyConnectedLayer(bottom, params.out_channels, params.has_bias, dtype=self.dtype)

    def create_pooling(self, params: PoolingParams, bottom: ShapeSpec) -> Layer:
        for length in (bottom.width, bottom.height):
            if length >= params.kernel and (length - params.kernel) % params.stride:
                warnings.warn(
                    f"pooling window {params.kernel}/{params.stride} does not tile input "
                    f"length {length}; the trailing partial window is dropped"
                )
                break
        if params.method is PoolMethod.AVE:
            return AveragePoolingLayer(bottom, params.kernel, params.stride, dtype=self.dtype)
        return MaxPoolingLayer(bottom, params.kernel, params.stride, dtype=self.dtype)

    def create_lrn(self, params: LRNParams, bottom: ShapeSpec) -> Layer:
        return LRNLayer(
            bottom,
            params.window,
            params.alpha,
            params.beta,
            k=params.k,
            within_channel=params.region is NormRegion.WITHIN_CHANNEL,
            dtype=self.dtype,
        )

    def create_dropout(self, params: DropoutParams, bottom: ShapeSpec) -> Layer:
        return DropoutLayer(bottom, params.rate, dtype=self.dtype)

    def create_batchnorm(self, params: BatchNormParams, bottom: ShapeSpec) -> Layer:
        return BatchNormalizationLayer(bottom, params.epsilon, params.momentum, dtype=self.dtype)

    def create_activation(self, params: ActivationParams, bottom: ShapeSpec) -> Layer:
        return ActivationLayer(bottom, params.function, params.negative_slope, dtype=self.dtype)


_BUILDERS: Dict[LayerKind, Callable[[LayerFactory, CanonicalParams, ShapeSpec], Layer]] = {
    LayerKind.CONVOLUTION: LayerFactory.create_convolution,
    LayerKind.DECONVOLUTION: LayerFactory.create_deconvolution,
    LayerKind.INNER_PRODUCT: LayerFactory.create_fully_connected,
    LayerKind.POOLING: LayerFactory.create_pooling,
    LayerKind.LRN: LayerFactory.create_lrn,
    LayerKind.DROPOUT: LayerFactory.create_dropout,
    LayerKind.BATCH_NORM: LayerFactory.create_batchnorm,
    **{kind: LayerFactory.create_activation for kind in LayerKind if kind.is_activation},
}

if set(_BUILDERS) != set(LayerKind):
    raise RuntimeError("layer factory table out of sync with LayerKind")
