"""Sequential shape propagation across the descriptor sequence."""

from typing import Dict, ItemsView, Optional
import logging
import math

from .errors import UnknownInput
from .ir import BlobRef, ShapeSpec

logger = logging.getLogger(__name__)


class ShapeTable:
    """
    Symbol table from blob reference to the shape its producer registered.

    One instance belongs to one conversion pass. The descriptor order is
    trusted to be topological: a lookup only ever finds shapes registered by
    earlier layers.
    """

    def __init__(self, inputs: Optional[Dict[BlobRef, ShapeSpec]] = None):
        self._shapes: Dict[BlobRef, ShapeSpec] = {}
        for ref, shape in (inputs or {}).items():
            self.register(ref, shape)

    def lookup(self, ref: Optional[BlobRef]) -> ShapeSpec:
        """Shape registered for ``ref``; UnknownInput when nothing produced it."""
        if ref is None or ref not in self._shapes:
            raise UnknownInput(ref)
        return self._shapes[ref]

    def register(self, ref: BlobRef, shape: ShapeSpec):
        """Register ``shape`` for ``ref``. Later registrations win."""
        previous = self._shapes.get(ref)
        if previous is not None and previous != shape:
            logger.debug("blob '%s' re-registered: %s -> %s", ref, previous, shape)
        self._shapes[ref] = shape

    def __contains__(self, ref: object) -> bool:
        return ref in self._shapes

    def __len__(self) -> int:
        return len(self._shapes)

    def items(self) -> ItemsView[BlobRef, ShapeSpec]:
        return self._shapes.items()


def conv_out_length(in_length: int, kernel: int, stride: int, same: bool) -> int:
    """Convolution output length: ceil(in/stride) for same, (in-k)/stride+1 for valid."""
    if same:
        return int(math.ceil(in_length / stride))
    if in_length < kernel:
        return 0
    return (in_length - kernel) // stride + 1


def deconv_out_length(in_length: int, kernel: int, stride: int, same: bool) -> int:
    """Transposed convolution output length: (in-1)*stride + k - 2*pad."""
    if in_length == 0:
        return 0
    pad = (kernel - 1) // 2 if same else 0
    return (in_length - 1) * stride + kernel - 2 * pad


def pool_out_length(in_length: int, kernel: int, stride: int) -> int:
    return conv_out_length(in_length, kernel, stride, same=False)
