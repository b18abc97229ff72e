"""Support predicates and a preflight compatibility pass."""

from typing import Any, Dict, List, Optional, Sequence, Set, Tuple
from dataclasses import dataclass, field

from .ir import LayerKind, NetDescriptor


# Descriptor types the converter materializes.
SUPPORTED_LAYER_TYPES: Sequence[str] = tuple(kind.value for kind in LayerKind)

# Data, input and evaluation markers: bypassed without constructing a node.
SKIPPED_LAYER_TYPES: Set[str] = {"Data", "Input", "EuclideanLoss", "Accuracy"}

# Supported types that never carry pretrained blobs.
WEIGHTLESS_LAYER_TYPES: Set[str] = {
    "SoftmaxWithLoss",
    "SigmoidCrossEntropyLoss",
    "LRN",
    "Dropout",
    "ReLU",
    "Sigmoid",
    "TanH",
    "Softmax",
}

# Descriptor type -> kernel layer_type values it may be reloaded into.
LAYER_CONVERSIONS: Tuple[Tuple[str, str], ...] = (
    ("InnerProduct", "fully-connected"),
    ("Convolution", "conv"),
    ("Deconvolution", "deconv"),
    ("Pooling", "ave-pool"),
    ("Pooling", "max-pool"),
    ("BatchNorm", "batch-norm"),
)

# Migration guidance for common unsupported types.
REPLACEMENT_SUGGESTIONS: Dict[str, str] = {
    "Scale": "Fold the Scale layer into the preceding BatchNorm or convolution weights.",
    "Eltwise": "Residual branches are not supported; only sequential networks convert.",
    "Concat": "Branching networks are not supported; only sequential networks convert.",
    "Flatten": "Remove Flatten; InnerProduct flattens its input itself.",
    "PReLU": "Replace PReLU with ReLU (negative_slope is supported).",
    "ELU": "Replace ELU with ReLU, Sigmoid or TanH.",
}


def layer_supported(layer_type: str) -> bool:
    return layer_type in SUPPORTED_LAYER_TYPES


def layer_skipped(layer_type: str) -> bool:
    return layer_type in SKIPPED_LAYER_TYPES


def layer_has_weights(layer_type: str) -> bool:
    """False for supported types known to carry no learned blobs."""
    return layer_type not in WEIGHTLESS_LAYER_TYPES


def layer_match(layer_type: str, kernel_type: str) -> bool:
    """Whether a descriptor type may be loaded into a kernel of ``kernel_type``."""
    return (layer_type, kernel_type) in LAYER_CONVERSIONS


@dataclass
class CompatibilityFinding:
    """Preflight verdict for one descriptor."""

    position: int
    layer_name: str
    layer_type: str
    status: str  # supported | skipped | unsupported
    reason: str = ""
    suggestion: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "position": self.position,
            "layer_name": self.layer_name,
            "layer_type": self.layer_type,
            "status": self.status,
            "reason": self.reason,
            "suggestion": self.suggestion,
        }


@dataclass
class CompatibilityReport:
    """Preflight report for a network."""

    net_name: str
    findings: List[CompatibilityFinding] = field(default_factory=list)

    @property
    def supported(self) -> List[CompatibilityFinding]:
        return [f for f in self.findings if f.status == "supported"]

    @property
    def skipped(self) -> List[CompatibilityFinding]:
        return [f for f in self.findings if f.status == "skipped"]

    @property
    def unsupported(self) -> List[CompatibilityFinding]:
        return [f for f in self.findings if f.status == "unsupported"]

    @property
    def compatible(self) -> bool:
        return len(self.unsupported) == 0

    def first_unsupported(self) -> Optional[CompatibilityFinding]:
        unsupported = self.unsupported
        return unsupported[0] if unsupported else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "net_name": self.net_name,
            "compatible": self.compatible,
            "supported_count": len(self.supported),
            "skipped_count": len(self.skipped),
            "unsupported_count": len(self.unsupported),
            "findings": [f.to_dict() for f in self.findings],
        }


def check_net(net: NetDescriptor) -> CompatibilityReport:
    """
    Classify every layer of ``net`` without constructing anything.

    Args:
        net: Decoded network

    Returns:
        Report with one finding per layer
    """
    report = CompatibilityReport(net_name=net.name)
    for position, layer in enumerate(net.layers):
        if layer_skipped(layer.type):
            finding = CompatibilityFinding(position, layer.name, layer.type, "skipped",
                                           reason="data/loss/accuracy marker")
        elif layer_supported(layer.type):
            finding = CompatibilityFinding(position, layer.name, layer.type, "supported")
            if layer.blobs and not layer_has_weights(layer.type):
                finding.status = "unsupported"
                finding.reason = f"{layer.type} carries no weights but {len(layer.blobs)} blobs were supplied"
        else:
            finding = CompatibilityFinding(
                position, layer.name, layer.type, "unsupported",
                reason=f"layer type '{layer.type}' is not supported",
                suggestion=REPLACEMENT_SUGGESTIONS.get(layer.type, ""),
            )
        report.findings.append(finding)
    return report
