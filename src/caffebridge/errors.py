"""Conversion errors. Every one of them aborts the whole conversion."""

from typing import Optional


class ConversionError(Exception):
    """Base class for all conversion failures.

    The converter attaches the originating layer (name, type and position in
    the descriptor sequence) before the error leaves the pipeline.
    """

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
        self.layer_name: Optional[str] = None
        self.layer_type: Optional[str] = None
        self.position: Optional[int] = None

    def attach_layer(self, name: str, layer_type: str, position: int) -> "ConversionError":
        """Record the originating layer unless an inner frame already did."""
        if self.layer_name is None:
            self.layer_name = name
            self.layer_type = layer_type
            self.position = position
        return self

    def __str__(self) -> str:
        if self.layer_name is None:
            return self.message
        return f"layer #{self.position} '{self.layer_name}' ({self.layer_type}): {self.message}"


class AmbiguousParameter(ConversionError):
    """Per-axis values disagree (e.g. kernel_w != kernel_h)."""


class UnsupportedShape(ConversionError):
    """A resolved value lies outside the supported canonical set."""


class MissingRequiredParameter(ConversionError):
    """A mandatory parameter bag or field is absent."""


class UnknownInput(ConversionError):
    """A layer's input has not been produced by any earlier layer."""

    def __init__(self, ref: Optional[str]):
        if ref is None:
            super().__init__("layer declares no input blob")
        else:
            super().__init__(f"input '{ref}' has no registered shape")
        self.ref = ref


class UnsupportedLayer(ConversionError):
    """Layer kind is neither supported nor skippable."""


class UnsupportedFiller(ConversionError):
    """Filler identifier is not in the allow-list."""


class WeightSizeMismatch(ConversionError):
    """Source blob element count disagrees with the destination tensor."""

    def __init__(self, source_layer: str, source_size: int,
                 destination_kind: str, destination_size: int,
                 what: str = "weight"):
        super().__init__(
            f"{what} size mismatch: source({source_layer}) has {source_size} elements, "
            f"destination({destination_kind}) expects {destination_size}"
        )
        self.source_layer = source_layer
        self.source_size = source_size
        self.destination_kind = destination_kind
        self.destination_size = destination_size


class UnconnectedWeightsNotZero(ConversionError):
    """A positionally skipped weight block holds non-zero values."""


class StatisticsShapeMismatch(ConversionError):
    """BatchNorm statistics are not stored as exactly three blobs."""
