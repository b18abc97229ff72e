"""Pretrained weight transcoding tests."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import numpy as np
import pytest
import torch

from caffebridge import LayerDescriptor, LayerFactory, ShapeSpec, ShapeTable, WeightBlob
from caffebridge.errors import (
    StatisticsShapeMismatch,
    UnconnectedWeightsNotZero,
    WeightSizeMismatch,
)


def build(layer_type, bag_name, bag, blobs, in_shape, check_unconnected=False):
    descriptor = LayerDescriptor(
        "layer", layer_type, ("data",), ("out",),
        params={bag_name: bag} if bag_name else {},
        blobs=tuple(WeightBlob(np.asarray(b, dtype=np.float32)) for b in blobs),
    )
    factory = LayerFactory(check_unconnected_weights=check_unconnected)
    return factory.create(descriptor, ShapeTable({"data": in_shape}))


def fully_connected(weights, biases=None, bias_term=True):
    blobs = [weights] + ([biases] if biases is not None else [])
    return build("InnerProduct", "inner_product_param", {"num_output": 3, "bias_term": bias_term},
                 blobs, ShapeSpec(4, 1, 1))


def test_fully_connected_transposes():
    node = fully_connected(np.arange(12), [0.5, 1.5, 2.5])
    weight, bias = node.weights
    # source row o holds the 4 input weights of output o
    assert weight[1, 2].item() == 9.0
    assert weight[3, 0].item() == 3.0
    assert torch.equal(weight, torch.arange(12.0).view(3, 4).t())
    assert bias.tolist() == [0.5, 1.5, 2.5]


def test_fully_connected_size_mismatch():
    for count in (11, 13):
        with pytest.raises(WeightSizeMismatch) as info:
            fully_connected(np.zeros(count), np.zeros(3))
        err = info.value
        assert err.source_size == count
        assert err.destination_size == 12
        assert err.destination_kind == "fully-connected"


def test_missing_or_short_bias():
    with pytest.raises(WeightSizeMismatch):
        fully_connected(np.zeros(12))
    with pytest.raises(WeightSizeMismatch):
        fully_connected(np.zeros(12), np.zeros(2))
    node = fully_connected(np.ones(12), bias_term=False)
    assert node.weights[1] is None


def conv_blobs(out_c, in_c, k, compact_groups=1):
    weights = np.arange(out_c * (in_c // compact_groups) * k * k, dtype=np.float32)
    return [weights, np.arange(out_c, dtype=np.float32)]


def test_conv_dense_layout():
    node = build("Convolution", "convolution_param", {"num_output": 2, "kernel_size": 2},
                 conv_blobs(2, 3, 2), ShapeSpec(4, 4, 3))
    weight, bias = node.weights
    assert torch.equal(weight, torch.arange(24.0).view(2, 3, 2, 2))
    assert bias.tolist() == [0.0, 1.0]


def test_grouped_conv_full_layout_skips_unconnected_blocks():
    # 2 groups, 2 in / 2 out: pairs (0,0) and (1,1) connected
    weights = np.array([1] * 4 + [9] * 4 + [9] * 4 + [2] * 4, dtype=np.float32)
    node = build("Convolution", "convolution_param",
                 {"num_output": 2, "kernel_size": 2, "group": 2, "bias_term": False},
                 [weights], ShapeSpec(3, 3, 2))
    weight = node.weights[0]
    assert tuple(weight.shape) == (2, 1, 2, 2)
    assert weight[0, 0].flatten().tolist() == [1.0] * 4
    assert weight[1, 0].flatten().tolist() == [2.0] * 4


def test_grouped_conv_compact_layout():
    weights = np.array([1] * 4 + [2] * 4, dtype=np.float32)
    node = build("Convolution", "convolution_param",
                 {"num_output": 2, "kernel_size": 2, "group": 2, "bias_term": False},
                 [weights], ShapeSpec(3, 3, 2))
    weight = node.weights[0]
    assert weight[0, 0].flatten().tolist() == [1.0] * 4
    assert weight[1, 0].flatten().tolist() == [2.0] * 4


def test_unconnected_weights_check():
    weights = np.array([1] * 4 + [9] * 4 + [0] * 4 + [2] * 4, dtype=np.float32)
    bag = {"num_output": 2, "kernel_size": 2, "group": 2, "bias_term": False}
    with pytest.raises(UnconnectedWeightsNotZero):
        build("Convolution", "convolution_param", bag, [weights], ShapeSpec(3, 3, 2),
              check_unconnected=True)

    weights[4:8] = 0
    node = build("Convolution", "convolution_param", bag, [weights], ShapeSpec(3, 3, 2),
                 check_unconnected=True)
    assert node.weights[0][1, 0].flatten().tolist() == [2.0] * 4


def test_conv_weight_count_mismatch():
    with pytest.raises(WeightSizeMismatch):
        build("Convolution", "convolution_param", {"num_output": 2, "kernel_size": 2},
              [np.zeros(23), np.zeros(2)], ShapeSpec(4, 4, 3))


def test_deconv_layout():
    # source (out=2, in=3) blocks land at destination [in, out]
    weights = np.repeat(np.arange(6, dtype=np.float32), 4)
    node = build("Deconvolution", "convolution_param",
                 {"num_output": 2, "kernel_size": 2, "bias_term": False},
                 [weights], ShapeSpec(2, 2, 3))
    weight = node.weights[0]
    assert tuple(weight.shape) == (3, 2, 2, 2)
    assert node.out_shape == ShapeSpec(3, 3, 2)
    for o in range(2):
        for i in range(3):
            assert weight[i, o].flatten().tolist() == [float(o * 3 + i)] * 4


GROUPED_DECONV = {"num_output": 2, "kernel_size": 2, "group": 2, "bias_term": False}


def test_grouped_deconv_full_layout():
    # 4 in / 2 out, 2 groups: output o is fed by inputs 2o and 2o+1
    blocks = []
    for o in range(2):
        for i in range(4):
            value = 10 * o + i + 1 if i // 2 == o else 0
            blocks += [value] * 4
    node = build("Deconvolution", "convolution_param", GROUPED_DECONV,
                 [np.array(blocks, dtype=np.float32)], ShapeSpec(3, 3, 4),
                 check_unconnected=True)
    weight = node.weights[0]
    assert tuple(weight.shape) == (4, 1, 2, 2)
    assert node.out_shape == ShapeSpec(4, 4, 2)
    assert [weight[i, 0, 0, 0].item() for i in range(4)] == [1.0, 2.0, 13.0, 14.0]


def test_grouped_deconv_compact_layout():
    blocks = np.repeat(np.array([1, 2, 13, 14], dtype=np.float32), 4)
    node = build("Deconvolution", "convolution_param", GROUPED_DECONV,
                 [blocks], ShapeSpec(3, 3, 4))
    weight = node.weights[0]
    assert [weight[i, 0, 0, 0].item() for i in range(4)] == [1.0, 2.0, 13.0, 14.0]
    assert bool((weight[3] == 14).all())


def test_grouped_deconv_unconnected_check():
    blocks = np.ones(2 * 4 * 4, dtype=np.float32)
    with pytest.raises(UnconnectedWeightsNotZero, match=r"out=0, in=2"):
        build("Deconvolution", "convolution_param", GROUPED_DECONV,
              [blocks], ShapeSpec(3, 3, 4), check_unconnected=True)


def test_grouped_conv_matches_blockwise_copy():
    out_c, in_c, groups, k = 6, 4, 2, 3
    source = np.arange(out_c * in_c * k * k, dtype=np.float32)
    node = build("Convolution", "convolution_param",
                 {"num_output": out_c, "kernel_size": k, "group": groups, "bias_term": False},
                 [source], ShapeSpec(5, 5, in_c))
    kernel = node.kernel
    blocks = torch.from_numpy(source).view(out_c, in_c, k, k)
    for o in range(out_c):
        for i in range(in_c):
            if kernel.table.is_connected(o, i):
                assert torch.equal(kernel.weight_block(o, i), blocks[o, i])


def test_batchnorm_statistics():
    node = build("BatchNorm", None, None, [[2, 4], [1, 1], [2]], ShapeSpec(1, 1, 2))
    mean, var = node.kernel.statistics()
    assert mean.tolist() == [1.0, 2.0]
    assert var.tolist() == [0.5, 0.5]
    assert node.weights == (None, None)


def test_batchnorm_zero_scale():
    node = build("BatchNorm", None, None, [[2, 4], [1, 1], [0]], ShapeSpec(1, 1, 2))
    mean, var = node.kernel.statistics()
    assert mean.tolist() == [0.0, 0.0]
    assert var.tolist() == [0.0, 0.0]


def test_batchnorm_malformed():
    with pytest.raises(StatisticsShapeMismatch):
        build("BatchNorm", None, None, [[2, 4], [1, 1]], ShapeSpec(1, 1, 2))
    with pytest.raises(StatisticsShapeMismatch):
        build("BatchNorm", None, None, [[2, 4], [1, 1], []], ShapeSpec(1, 1, 2))
    with pytest.raises(WeightSizeMismatch):
        build("BatchNorm", None, None, [[2, 4, 6], [1, 1], [1]], ShapeSpec(1, 1, 2))


def test_average_pool_gets_constant_fill():
    node = build("Pooling", "pooling_param", {"pool": "AVE", "kernel_size": 2},
                 [[5.0, 5.0]], ShapeSpec(4, 4, 2))
    weight, bias = node.weights
    assert weight.tolist() == [0.25, 0.25]
    assert bias.tolist() == [0.0, 0.0]


def test_blobs_on_weightless_layer():
    with pytest.raises(WeightSizeMismatch):
        build("ReLU", None, None, [[1.0]], ShapeSpec(2, 2, 1))
