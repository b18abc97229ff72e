"""Build descriptors from decoded mappings.

Wire decoding stays with the caller. Any structured decoder that yields plain
mappings works; for protobuf-encoded networks (text or binary) that is
``google.protobuf.json_format.MessageToDict(net,
preserving_proto_field_name=True)``. Both the current ``layer`` list and the
legacy ``layers`` list with enum type names are accepted.
"""

from typing import Any, Dict, List, Mapping, Sequence, Tuple
import logging

import numpy as np

from .errors import MissingRequiredParameter, UnsupportedShape
from .ir import LayerDescriptor, NetDescriptor, ShapeSpec, WeightBlob

logger = logging.getLogger(__name__)

# Legacy enum type names -> current type strings.
_LEGACY_TYPES: Dict[str, str] = {
    "ACCURACY": "Accuracy",
    "CONVOLUTION": "Convolution",
    "DATA": "Data",
    "DECONVOLUTION": "Deconvolution",
    "DROPOUT": "Dropout",
    "EUCLIDEAN_LOSS": "EuclideanLoss",
    "INNER_PRODUCT": "InnerProduct",
    "LRN": "LRN",
    "POOLING": "Pooling",
    "RELU": "ReLU",
    "SIGMOID": "Sigmoid",
    "SIGMOID_CROSS_ENTROPY_LOSS": "SigmoidCrossEntropyLoss",
    "SOFTMAX": "Softmax",
    "SOFTMAX_LOSS": "SoftmaxWithLoss",
    "TANH": "TanH",
}


def _int_list(values: Any) -> List[int]:
    if values is None:
        return []
    if isinstance(values, (str, int)):
        values = [values]
    return [int(v) for v in values]


def shape_from_dims(dims: Sequence[Any]) -> ShapeSpec:
    """
    Map blob dimensions onto a ShapeSpec.

    Args:
        dims: (N, C, H, W), (C, H, W) or (N, D) dimensions

    Returns:
        ShapeSpec(width=W, height=H, depth=C); flat (N, D) inputs become (1, 1, D)
    """
    dims = _int_list(dims)
    if len(dims) == 4:
        return ShapeSpec(width=dims[3], height=dims[2], depth=dims[1])
    if len(dims) == 3:
        return ShapeSpec(width=dims[2], height=dims[1], depth=dims[0])
    if len(dims) == 2:
        return ShapeSpec(width=1, height=1, depth=dims[1])
    raise UnsupportedShape(f"cannot interpret input dimensions {dims}")


def blob_from_dict(mapping: Any) -> WeightBlob:
    if isinstance(mapping, WeightBlob):
        return mapping
    data = mapping.get("data")
    if data is None or len(data) == 0:
        data = mapping.get("double_data", [])
    dims = _int_list((mapping.get("shape") or {}).get("dim"))
    if not dims:
        dims = _int_list([mapping[key] for key in ("num", "channels", "height", "width") if key in mapping])
    return WeightBlob(data=np.asarray(data, dtype=np.float32), shape=tuple(dims))


def _str_tuple(values: Any) -> Tuple[str, ...]:
    if values is None:
        return ()
    if isinstance(values, str):
        return (values,)
    return tuple(str(v) for v in values)


def layer_type_name(value: Any) -> str:
    """Current type string for a current or legacy type value."""
    name = str(value)
    return _LEGACY_TYPES.get(name, name)


def layer_from_dict(mapping: Mapping[str, Any]) -> LayerDescriptor:
    if "type" not in mapping:
        raise MissingRequiredParameter(f"layer '{mapping.get('name', '?')}' has no type")
    params = {key: value for key, value in mapping.items()
              if key.endswith("_param") and value is not None}
    return LayerDescriptor(
        name=str(mapping.get("name", "")),
        type=layer_type_name(mapping["type"]),
        bottom=_str_tuple(mapping.get("bottom")),
        top=_str_tuple(mapping.get("top")),
        params=params,
        blobs=tuple(blob_from_dict(blob) for blob in mapping.get("blobs", ())),
    )


def _declared_inputs(mapping: Mapping[str, Any]) -> Dict[str, ShapeSpec]:
    names = list(_str_tuple(mapping.get("input")))
    inputs: Dict[str, ShapeSpec] = {}

    input_shapes = mapping.get("input_shape") or []
    if input_shapes:
        for name, shape in zip(names, input_shapes):
            inputs[name] = shape_from_dims(shape.get("dim"))
    elif mapping.get("input_dim"):
        dims = _int_list(mapping["input_dim"])
        for index, name in enumerate(names):
            inputs[name] = shape_from_dims(dims[4 * index:4 * index + 4])

    missing = [name for name in names if name not in inputs]
    if missing:
        raise MissingRequiredParameter(f"net inputs {missing} declare no shape")
    return inputs


def _input_layer_shapes(layer: Mapping[str, Any]) -> List[Tuple[str, ShapeSpec]]:
    shapes = (layer.get("input_param") or {}).get("shape") or []
    return [(top, shape_from_dims(shape.get("dim"))) for top, shape in zip(_str_tuple(layer.get("top")), shapes)]


def net_from_dict(mapping: Mapping[str, Any]) -> NetDescriptor:
    """
    Build a NetDescriptor from a decoded network mapping.

    Args:
        mapping: Decoded network with ``layer`` (or legacy ``layers``) records

    Returns:
        NetDescriptor with declared input shapes and layers in order
    """
    raw_layers = mapping.get("layer") or mapping.get("layers") or []
    inputs = _declared_inputs(mapping)
    layers = []
    for raw in raw_layers:
        layer = layer_from_dict(raw)
        if layer.type == "Input":
            for name, shape in _input_layer_shapes(raw):
                inputs.setdefault(name, shape)
        layers.append(layer)

    logger.debug("decoded net '%s': %d layers, inputs %s",
                 mapping.get("name", ""), len(layers), {k: str(v) for k, v in inputs.items()})
    return NetDescriptor(name=str(mapping.get("name", "")), inputs=inputs, layers=layers)
