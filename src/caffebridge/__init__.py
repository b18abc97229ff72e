"""
Caffebridge - Convert Caffe network descriptors into PyTorch layer graphs.

Reads layer records in order, resolves their parameters to one canonical
form, propagates shapes, and builds sized kernels filled with pretrained
weights or initializer values.
"""

__version__ = "0.1.0"

# Core imports
from .ir import LayerKind, ShapeSpec, WeightBlob, FillerSpec, LayerDescriptor, NetDescriptor
from .convert import convert, reload_weights, Converter, ConverterConfig
from .graph import Graph, LayerNode, format_graph
from .decode import net_from_dict, layer_from_dict, blob_from_dict

# Errors
from .errors import (
    ConversionError,
    AmbiguousParameter,
    UnsupportedShape,
    MissingRequiredParameter,
    UnknownInput,
    UnsupportedLayer,
    UnsupportedFiller,
    WeightSizeMismatch,
    UnconnectedWeightsNotZero,
    StatisticsShapeMismatch,
)

# Building blocks
from .params import canonicalize
from .factory import LayerFactory
from .shapes import ShapeTable
from .connection import ConnectionTable
from .fillers import FillerRegistry, get_registry, register_filler
from .support import (
    layer_supported,
    layer_skipped,
    layer_has_weights,
    layer_match,
    check_net,
    CompatibilityReport,
)

__all__ = [
    # Core functions
    'convert',
    'reload_weights',
    'check_net',
    'canonicalize',
    'net_from_dict',
    'layer_from_dict',
    'blob_from_dict',
    'format_graph',

    # Classes
    'Converter',
    'ConverterConfig',
    'Graph',
    'LayerNode',
    'LayerFactory',
    'ShapeTable',
    'ConnectionTable',
    'FillerRegistry',
    'CompatibilityReport',
    'LayerKind',
    'ShapeSpec',
    'WeightBlob',
    'FillerSpec',
    'LayerDescriptor',
    'NetDescriptor',

    # Errors
    'ConversionError',
    'AmbiguousParameter',
    'UnsupportedShape',
    'MissingRequiredParameter',
    'UnknownInput',
    'UnsupportedLayer',
    'UnsupportedFiller',
    'WeightSizeMismatch',
    'UnconnectedWeightsNotZero',
    'StatisticsShapeMismatch',

    # Predicates
    'layer_supported',
    'layer_skipped',
    'layer_has_weights',
    'layer_match',
    'get_registry',
    'register_filler',

    # Version
    '__version__',
]
