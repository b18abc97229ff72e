"""
Layer-execution kernels instantiated by the layer factory.
"""

from .base import Layer
from .conv import ConvolutionBase, ConvolutionalLayer, DeconvolutionalLayer
from .fully_connected import FullyConnectedLayer
from .pooling import MaxPoolingLayer, AveragePoolingLayer
from .normalization import LRNLayer, BatchNormalizationLayer
from .activation import ActivationLayer, DropoutLayer, ACTIVATION_FUNCTIONS

# layer_type tag -> kernel class
KERNEL_TYPES = {
    cls.layer_type: cls
    for cls in (
        ConvolutionalLayer,
        DeconvolutionalLayer,
        FullyConnectedLayer,
        MaxPoolingLayer,
        AveragePoolingLayer,
        LRNLayer,
        BatchNormalizationLayer,
        ActivationLayer,
        DropoutLayer,
    )
}

__all__ = [
    'Layer',
    'ConvolutionBase',
    'ConvolutionalLayer',
    'DeconvolutionalLayer',
    'FullyConnectedLayer',
    'MaxPoolingLayer',
    'AveragePoolingLayer',
    'LRNLayer',
    'BatchNormalizationLayer',
    'ActivationLayer',
    'DropoutLayer',
    'ACTIVATION_FUNCTIONS',
    'KERNEL_TYPES',
]
