"""Pretrained weight transcoding into kernel-native layouts.

Blobs are addressed positionally: blob 0 is the weight, blob 1 the bias
(BatchNorm: mean accumulator, variance accumulator, scale count). The source
format carries no role tags, so nothing here infers roles from blob shapes.
"""

from typing import Callable, Dict, Optional
import logging

import torch

from .errors import StatisticsShapeMismatch, UnconnectedWeightsNotZero, WeightSizeMismatch
from .ir import LayerDescriptor, LayerKind, WeightBlob
from .kernels import (
    AveragePoolingLayer,
    BatchNormalizationLayer,
    ConvolutionBase,
    FullyConnectedLayer,
    Layer,
)
from .params import BatchNormParams, CanonicalParams, ConvolutionParams, InnerProductParams

logger = logging.getLogger(__name__)


def _blob_tensor(blob: WeightBlob, dtype: torch.dtype) -> torch.Tensor:
    return torch.from_numpy(blob.data).to(dtype)


def _load_bias(src: LayerDescriptor, dst: Layer, out_size: int):
    if len(src.blobs) < 2:
        raise WeightSizeMismatch(src.name, 0, dst.layer_type, out_size, what="bias")
    biases = src.blobs[1]
    if biases.count != out_size:
        raise WeightSizeMismatch(src.name, biases.count, dst.layer_type, out_size, what="bias")
    with torch.no_grad():
        dst.bias.copy_(_blob_tensor(biases, dst.dtype))


def load_weights_fullyconnected(src: LayerDescriptor, dst: FullyConnectedLayer,
                                params: InnerProductParams, check_unconnected: bool = False):
    """Copy (out, in) source weights into the (in, out) destination, transposing."""
    weights = src.blobs[0]
    expected = dst.in_size * dst.out_size
    if weights.count != expected:
        raise WeightSizeMismatch(src.name, weights.count, dst.layer_type, expected)

    source = _blob_tensor(weights, dst.dtype).view(dst.out_size, dst.in_size)
    with torch.no_grad():
        dst.weight.copy_(source.t())

    if params.has_bias:
        _load_bias(src, dst, dst.out_size)


def load_weights_conv(src: LayerDescriptor, dst: ConvolutionBase,
                      params: ConvolutionParams, check_unconnected: bool = False):
    """
    Copy convolution/deconvolution weights as (out, in) k*k blocks.

    The source holds k*k blocks in (out, in) row order. Two layouts are
    accepted and told apart by element count:

    - full connectivity (out * in * k * k): every (out, in) pair has a block;
      blocks of unconnected pairs are positionally skipped, the read cursor
      advances past them and nothing is written;
    - compact grouped (out * in/groups * k * k): only connected pairs are
      stored.

    With a single group both layouts coincide.
    """
    weights = src.blobs[0]
    table = dst.table
    block = dst.window_size * dst.window_size
    full_size = dst.out_channels * dst.in_channels * block
    compact_size = table.num_connections() * block

    if weights.count == full_size:
        positional_skip = True
    elif weights.count == compact_size:
        positional_skip = False
    else:
        raise WeightSizeMismatch(src.name, weights.count, dst.layer_type, full_size)

    k = dst.window_size
    source = _blob_tensor(weights, dst.dtype)
    mask = table.to_mask()
    skipped = 0

    if positional_skip:
        source = source.view(dst.out_channels, dst.in_channels, k, k)
        unconnected = ~mask
        skipped = int(unconnected.sum())
        if check_unconnected and skipped:
            nonzero = (source[unconnected].view(skipped, -1) != 0).any(dim=1)
            if bool(nonzero.any()):
                out_idx, in_idx = unconnected.nonzero(as_tuple=True)
                first = int(nonzero.nonzero()[0])
                raise UnconnectedWeightsNotZero(
                    f"unconnected block (out={int(out_idx[first])}, in={int(in_idx[first])}) "
                    f"holds non-zero weights"
                )
        blocks = source[mask]
    else:
        blocks = source.view(-1, k, k)

    # boolean mask and nonzero() both walk (out, in) in row order
    out_idx, in_idx = mask.nonzero(as_tuple=True)
    with torch.no_grad():
        dst.weight.data[dst.block_index(out_idx, in_idx)] = blocks

    if skipped:
        logger.debug("%s: skipped %d unconnected %dx%d weight blocks",
                     src.name, skipped, dst.window_size, dst.window_size)

    if params.has_bias:
        _load_bias(src, dst, dst.out_channels)


def load_weights_pool(src: LayerDescriptor, dst: Layer,
                      params: CanonicalParams, check_unconnected: bool = False):
    """Pooling consumes no blobs; average pooling gets its constant fill back."""
    if isinstance(dst, AveragePoolingLayer):
        dst.fill_average()


def load_weights_batchnorm(src: LayerDescriptor, dst: BatchNormalizationLayer,
                           params: BatchNormParams, check_unconnected: bool = False):
    """
    Recover running mean/variance from accumulated statistics.

    Blob 0 and 1 are sums scaled by the scalar in blob 2; a zero scale means
    nothing was accumulated and yields zero mean and variance.
    """
    if len(src.blobs) != 3:
        raise StatisticsShapeMismatch(
            f"expected 3 statistics blobs (mean, variance, scale), got {len(src.blobs)}"
        )
    mean_blob, var_blob, scale_blob = src.blobs
    if scale_blob.count < 1:
        raise StatisticsShapeMismatch("statistics scale blob is empty")
    for what, blob in (("mean", mean_blob), ("variance", var_blob)):
        if blob.count != dst.channels:
            raise WeightSizeMismatch(src.name, blob.count, dst.layer_type, dst.channels, what=what)

    scale = float(scale_blob.data[0])
    factor = 0.0 if scale == 0 else 1.0 / scale
    dst.set_statistics(
        _blob_tensor(mean_blob, dst.dtype) * factor,
        _blob_tensor(var_blob, dst.dtype) * factor,
    )


_LOADERS: Dict[LayerKind, Callable] = {
    LayerKind.CONVOLUTION: load_weights_conv,
    LayerKind.DECONVOLUTION: load_weights_conv,
    LayerKind.INNER_PRODUCT: load_weights_fullyconnected,
    LayerKind.POOLING: load_weights_pool,
    LayerKind.BATCH_NORM: load_weights_batchnorm,
}


def has_loader(kind: Optional[LayerKind]) -> bool:
    return kind in _LOADERS


def load_weights(src: LayerDescriptor, dst: Layer, params: CanonicalParams,
                 check_unconnected: bool = False):
    """
    Transcode the blobs of ``src`` into the tensors of ``dst``.

    Args:
        src: Descriptor carrying the pretrained blobs
        dst: Freshly constructed kernel for the same layer
        params: Canonical parameters of ``src``
        check_unconnected: Require positionally skipped weight blocks to be zero

    Raises:
        WeightSizeMismatch: blob element counts disagree with the kernel, or
            blobs were supplied for a layer kind that has no weights
        StatisticsShapeMismatch: BatchNorm statistics are malformed
    """
    kind = src.kind
    loader = _LOADERS.get(kind)
    if loader is None:
        total = sum(blob.count for blob in src.blobs)
        raise WeightSizeMismatch(src.name, total, dst.layer_type, 0)
    loader(src, dst, params, check_unconnected)
