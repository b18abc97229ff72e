"""Parameter canonicalization.

The descriptor format encodes most spatial parameters redundantly: a kernel
size may arrive as ``kernel_size`` (scalar or one-entry list) or as the pair
``kernel_h``/``kernel_w``; strides and paddings follow the same pattern.
``canonicalize`` resolves every such combination into exactly one value per
field, or raises. Nothing here touches shapes or tensors.
"""

from typing import Any, Callable, Dict, List, Mapping, Optional, Union
from dataclasses import dataclass
from enum import Enum

from .errors import (
    AmbiguousParameter,
    MissingRequiredParameter,
    UnsupportedFiller,
    UnsupportedLayer,
    UnsupportedShape,
)
from .fillers import get_registry
from .ir import FillerSpec, LayerDescriptor, LayerKind


# Defaults for genuinely optional fields, one table per kind. Values follow
# the descriptor format's own documented defaults.
LAYER_DEFAULTS: Dict[LayerKind, Dict[str, Any]] = {
    LayerKind.CONVOLUTION: {"stride": 1, "pad": 0, "group": 1, "bias_term": True, "dilation": 1},
    LayerKind.DECONVOLUTION: {"stride": 1, "pad": 0, "group": 1, "bias_term": True, "dilation": 1},
    LayerKind.INNER_PRODUCT: {"bias_term": True, "axis": 1},
    LayerKind.POOLING: {"pool": "MAX", "pad": 0},  # stride defaults to the kernel size
    LayerKind.LRN: {
        "local_size": 5,
        "alpha": 1.0,
        "beta": 0.75,
        "k": 1.0,
        "norm_region": "ACROSS_CHANNELS",
    },
    LayerKind.DROPOUT: {"dropout_ratio": 0.5},
    LayerKind.BATCH_NORM: {"eps": 1e-5, "moving_average_fraction": 0.999},
    LayerKind.RELU: {"negative_slope": 0.0},
    LayerKind.SOFTMAX: {"axis": 1},
    LayerKind.SOFTMAX_WITH_LOSS: {"axis": 1},
}

# Name of the parameter bag each kind reads.
PARAM_BAGS: Dict[LayerKind, str] = {
    LayerKind.CONVOLUTION: "convolution_param",
    LayerKind.DECONVOLUTION: "convolution_param",
    LayerKind.INNER_PRODUCT: "inner_product_param",
    LayerKind.POOLING: "pooling_param",
    LayerKind.LRN: "lrn_param",
    LayerKind.DROPOUT: "dropout_param",
    LayerKind.BATCH_NORM: "batch_norm_param",
    LayerKind.RELU: "relu_param",
    LayerKind.SOFTMAX: "softmax_param",
    LayerKind.SOFTMAX_WITH_LOSS: "softmax_param",
}

# Kinds whose parameter bag must be present.
REQUIRED_BAGS = frozenset({
    LayerKind.CONVOLUTION,
    LayerKind.DECONVOLUTION,
    LayerKind.INNER_PRODUCT,
    LayerKind.POOLING,
})

_AXIS_PAIR_FIELDS = frozenset({"kernel_size", "stride", "pad"})


class PadMode(Enum):
    VALID = "valid"  # pad = 0
    SAME = "same"    # pad = (kernel - 1) / 2


class PoolMethod(Enum):
    MAX = "max"
    AVE = "ave"


class NormRegion(Enum):
    ACROSS_CHANNELS = "across_channels"
    WITHIN_CHANNEL = "within_channel"


@dataclass(frozen=True)
class ConvolutionParams:
    """Canonical parameters shared by convolution and deconvolution."""
    out_channels: int
    kernel: int
    stride: int = 1
    pad_mode: PadMode = PadMode.VALID
    groups: int = 1
    has_bias: bool = True
    weight_filler: Optional[FillerSpec] = None
    bias_filler: Optional[FillerSpec] = None

    @property
    def grouped(self) -> bool:
        return self.groups > 1


@dataclass(frozen=True)
class PoolingParams:
    kernel: int
    stride: int
    method: PoolMethod = PoolMethod.MAX


@dataclass(frozen=True)
class InnerProductParams:
    out_channels: int
    has_bias: bool = True
    weight_filler: Optional[FillerSpec] = None
    bias_filler: Optional[FillerSpec] = None


@dataclass(frozen=True)
class LRNParams:
    window: int
    alpha: float
    beta: float
    k: float
    region: NormRegion = NormRegion.ACROSS_CHANNELS


@dataclass(frozen=True)
class DropoutParams:
    rate: float


@dataclass(frozen=True)
class BatchNormParams:
    epsilon: float
    momentum: float


@dataclass(frozen=True)
class ActivationParams:
    function: str  # softmax | sigmoid | relu | tanh
    negative_slope: float = 0.0


CanonicalParams = Union[
    ConvolutionParams,
    PoolingParams,
    InnerProductParams,
    LRNParams,
    DropoutParams,
    BatchNormParams,
    ActivationParams,
]


def _present(bag: Mapping[str, Any], key: str) -> bool:
    value = bag.get(key)
    if value is None:
        return False
    if isinstance(value, (list, tuple)) and not value:
        return False
    return True


def _as_int_list(value: Any) -> List[int]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [int(v) for v in value]
    return [int(value)]


def _resolve_axis_pair(bag: Mapping[str, Any], field: str,
                       h_field: str, w_field: str, what: str) -> Optional[int]:
    """Resolve a symmetric field and its per-axis pair into one value.

    Returns None when neither encoding is present.
    """
    symmetric = _as_int_list(bag.get(field))
    if len(symmetric) > 1:
        raise UnsupportedShape(
            f"{what}: '{field}' has {len(symmetric)} entries, only a single "
            f"symmetric value is supported"
        )

    has_h, has_w = _present(bag, h_field), _present(bag, w_field)
    if has_h != has_w:
        raise AmbiguousParameter(f"{what}: '{h_field}' and '{w_field}' must be given together")

    per_axis = None
    if has_h:
        h, w = int(bag[h_field]), int(bag[w_field])
        if h != w:
            raise AmbiguousParameter(f"{what}: {w_field}={w} differs from {h_field}={h}")
        per_axis = h

    if per_axis is not None and symmetric and symmetric[0] != per_axis:
        raise AmbiguousParameter(
            f"{what}: '{field}'={symmetric[0]} conflicts with per-axis value {per_axis}"
        )

    if per_axis is not None:
        return per_axis
    if symmetric:
        return symmetric[0]
    return None


def resolve_kernel_size(bag: Mapping[str, Any]) -> int:
    """Square kernel size from ``kernel_h``/``kernel_w`` or ``kernel_size``."""
    kernel = _resolve_axis_pair(bag, "kernel_size", "kernel_h", "kernel_w", "kernel")
    if kernel is None:
        raise MissingRequiredParameter("kernel size is not specified")
    if kernel < 1:
        raise UnsupportedShape(f"kernel size must be positive, got {kernel}")
    return kernel


def resolve_stride(bag: Mapping[str, Any], default: int) -> int:
    """Isotropic stride, ``default`` when no stride field is present."""
    stride = _resolve_axis_pair(bag, "stride", "stride_h", "stride_w", "stride")
    if stride is None:
        return default
    if stride < 1:
        raise UnsupportedShape(f"stride must be positive, got {stride}")
    return stride


def resolve_padding(bag: Mapping[str, Any], kernel: int) -> PadMode:
    """Map the resolved pad amount onto one of the two supported policies."""
    pad = _resolve_axis_pair(bag, "pad", "pad_h", "pad_w", "padding")
    if pad is None or pad == 0:
        return PadMode.VALID
    if 2 * pad == kernel - 1:
        return PadMode.SAME
    raise UnsupportedShape(
        f"padding {pad} with kernel {kernel} is neither 'valid' (0) nor 'same' ((kernel-1)/2)"
    )


def resolve_filler(bag: Mapping[str, Any], key: str) -> Optional[FillerSpec]:
    """Filler reference under ``key``; None when absent."""
    spec = bag.get(key)
    if spec is None:
        return None
    if isinstance(spec, str):
        spec = {"type": spec}
    filler_type = str(spec.get("type", "constant"))
    if not get_registry().supports(filler_type):
        raise UnsupportedFiller(f"unsupported filler type '{filler_type}' for '{key}'")
    return FillerSpec(
        type=filler_type,
        value=float(spec.get("value", 0.0)),
        min=float(spec.get("min", 0.0)),
        max=float(spec.get("max", 1.0)),
        mean=float(spec.get("mean", 0.0)),
        std=float(spec.get("std", 1.0)),
        variance_norm=_enum_name(
            spec.get("variance_norm", "FAN_IN"), ["FAN_IN", "FAN_OUT", "AVERAGE"], "variance norm"
        ),
    )


def _enum_name(value: Any, names: List[str], what: str) -> str:
    """Enum fields arrive either as names or as their integer tags."""
    if isinstance(value, bool):
        raise UnsupportedShape(f"invalid {what}: {value!r}")
    if isinstance(value, int):
        if 0 <= value < len(names):
            return names[value]
        raise UnsupportedShape(f"invalid {what}: {value}")
    return str(value).upper()


def _with_defaults(kind: LayerKind, bag: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    # Axis-pair fields are resolved from what the descriptor states; merging
    # their defaults would make e.g. pad_h/pad_w look like a conflict.
    merged = {
        key: value for key, value in LAYER_DEFAULTS.get(kind, {}).items()
        if key not in _AXIS_PAIR_FIELDS
    }
    for key, value in (bag or {}).items():
        if value is not None:
            merged[key] = value
    return merged


def _bag(descriptor: LayerDescriptor, kind: LayerKind) -> Dict[str, Any]:
    bag_name = PARAM_BAGS.get(kind)
    raw = descriptor.param(bag_name) if bag_name else None
    if raw is None and kind in REQUIRED_BAGS:
        raise MissingRequiredParameter(f"'{bag_name}' missing for {kind.value} layer")
    return _with_defaults(kind, raw)


def _out_channels(bag: Mapping[str, Any], kind: LayerKind) -> int:
    out_channels = int(bag.get("num_output") or 0)
    if out_channels < 1:
        raise MissingRequiredParameter(f"'num_output' missing for {kind.value} layer")
    return out_channels


def canonicalize_convolution(descriptor: LayerDescriptor, kind: LayerKind) -> ConvolutionParams:
    bag = _bag(descriptor, kind)

    for dilation in _as_int_list(bag.get("dilation")):
        if dilation != 1:
            raise UnsupportedShape(f"dilation {dilation} is not supported")

    kernel = resolve_kernel_size(bag)
    groups = int(bag["group"])
    if groups < 1:
        raise UnsupportedShape(f"group count must be positive, got {groups}")

    return ConvolutionParams(
        out_channels=_out_channels(bag, kind),
        kernel=kernel,
        stride=resolve_stride(bag, default=LAYER_DEFAULTS[kind]["stride"]),
        pad_mode=resolve_padding(bag, kernel),
        groups=groups,
        has_bias=bool(bag["bias_term"]),
        weight_filler=resolve_filler(bag, "weight_filler"),
        bias_filler=resolve_filler(bag, "bias_filler"),
    )


def canonicalize_pooling(descriptor: LayerDescriptor, kind: LayerKind) -> PoolingParams:
    bag = _bag(descriptor, kind)

    if bag.get("global_pooling"):
        raise UnsupportedShape("global pooling is not supported")

    kernel = resolve_kernel_size(bag)
    pad = _resolve_axis_pair(bag, "pad", "pad_h", "pad_w", "padding")
    if pad:
        raise UnsupportedShape(f"pooling padding {pad} is not supported")

    method = _enum_name(bag["pool"], ["MAX", "AVE", "STOCHASTIC"], "pooling method")
    if method not in ("MAX", "AVE"):
        raise UnsupportedLayer(f"pooling method '{method}' is not supported")

    return PoolingParams(
        kernel=kernel,
        stride=resolve_stride(bag, default=kernel),
        method=PoolMethod.MAX if method == "MAX" else PoolMethod.AVE,
    )


def canonicalize_inner_product(descriptor: LayerDescriptor, kind: LayerKind) -> InnerProductParams:
    bag = _bag(descriptor, kind)
    if int(bag["axis"]) != 1:
        raise UnsupportedShape(f"inner product axis {bag['axis']} is not supported")
    if bag.get("transpose"):
        raise UnsupportedShape("transposed inner product weights are not supported")
    return InnerProductParams(
        out_channels=_out_channels(bag, kind),
        has_bias=bool(bag["bias_term"]),
        weight_filler=resolve_filler(bag, "weight_filler"),
        bias_filler=resolve_filler(bag, "bias_filler"),
    )


def canonicalize_lrn(descriptor: LayerDescriptor, kind: LayerKind) -> LRNParams:
    bag = _bag(descriptor, kind)
    window = int(bag["local_size"])
    if window < 1 or window % 2 == 0:
        raise UnsupportedShape(f"LRN local_size must be a positive odd number, got {window}")
    region = _enum_name(bag["norm_region"], ["ACROSS_CHANNELS", "WITHIN_CHANNEL"], "norm region")
    if region not in ("ACROSS_CHANNELS", "WITHIN_CHANNEL"):
        raise UnsupportedShape(f"unknown LRN norm region '{region}'")
    return LRNParams(
        window=window,
        alpha=float(bag["alpha"]),
        beta=float(bag["beta"]),
        k=float(bag["k"]),
        region=NormRegion.ACROSS_CHANNELS if region == "ACROSS_CHANNELS" else NormRegion.WITHIN_CHANNEL,
    )


def canonicalize_dropout(descriptor: LayerDescriptor, kind: LayerKind) -> DropoutParams:
    bag = _bag(descriptor, kind)
    rate = float(bag["dropout_ratio"])
    if not 0.0 <= rate <= 1.0:
        raise UnsupportedShape(f"dropout ratio {rate} outside [0, 1]")
    return DropoutParams(rate=rate)


def canonicalize_batchnorm(descriptor: LayerDescriptor, kind: LayerKind) -> BatchNormParams:
    bag = _bag(descriptor, kind)
    return BatchNormParams(
        epsilon=float(bag["eps"]),
        momentum=float(bag["moving_average_fraction"]),
    )


_ACTIVATION_FUNCTIONS = {
    LayerKind.SOFTMAX: "softmax",
    LayerKind.SOFTMAX_WITH_LOSS: "softmax",
    LayerKind.SIGMOID: "sigmoid",
    LayerKind.SIGMOID_CROSS_ENTROPY_LOSS: "sigmoid",
    LayerKind.RELU: "relu",
    LayerKind.TANH: "tanh",
}


def canonicalize_activation(descriptor: LayerDescriptor, kind: LayerKind) -> ActivationParams:
    bag = _bag(descriptor, kind)
    if "axis" in bag and int(bag["axis"]) != 1:
        raise UnsupportedShape(f"softmax axis {bag['axis']} is not supported")
    return ActivationParams(
        function=_ACTIVATION_FUNCTIONS[kind],
        negative_slope=float(bag.get("negative_slope", 0.0)),
    )


_CANONICALIZERS: Dict[LayerKind, Callable[[LayerDescriptor, LayerKind], CanonicalParams]] = {
    LayerKind.CONVOLUTION: canonicalize_convolution,
    LayerKind.DECONVOLUTION: canonicalize_convolution,
    LayerKind.INNER_PRODUCT: canonicalize_inner_product,
    LayerKind.POOLING: canonicalize_pooling,
    LayerKind.LRN: canonicalize_lrn,
    LayerKind.DROPOUT: canonicalize_dropout,
    LayerKind.BATCH_NORM: canonicalize_batchnorm,
    **{kind: canonicalize_activation for kind in _ACTIVATION_FUNCTIONS},
}

if set(_CANONICALIZERS) != set(LayerKind):
    raise RuntimeError("canonicalizer table out of sync with LayerKind")


def canonicalize(descriptor: LayerDescriptor) -> CanonicalParams:
    """
    Resolve a descriptor's parameter bag into its canonical record.

    Args:
        descriptor: Decoded layer record

    Returns:
        One of the canonical parameter dataclasses, chosen by layer kind

    Raises:
        UnsupportedLayer: the layer kind is not supported
        AmbiguousParameter, UnsupportedShape, MissingRequiredParameter,
        UnsupportedFiller: the parameter bag cannot be canonicalized
    """
    kind = descriptor.kind
    if kind is None:
        raise UnsupportedLayer(f"layer type '{descriptor.type}' is not supported")
    return _CANONICALIZERS[kind](descriptor, kind)
