"""End-to-end conversion tests."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import logging
import warnings

import numpy as np
import pytest
import torch

import caffebridge as cb
from caffebridge import (
    ConverterConfig,
    LayerDescriptor,
    NetDescriptor,
    ShapeSpec,
    WeightBlob,
    convert,
    reload_weights,
)
from caffebridge.errors import (
    ConversionError,
    UnknownInput,
    UnsupportedLayer,
    UnsupportedShape,
    WeightSizeMismatch,
)


def lenet(**extra_layers):
    layers = [
        LayerDescriptor("data", "Data", (), ("data",)),
        LayerDescriptor("conv1", "Convolution", ("data",), ("conv1",),
                        params={"convolution_param": {"num_output": 20, "kernel_size": 5}}),
        LayerDescriptor("pool1", "Pooling", ("conv1",), ("pool1",),
                        params={"pooling_param": {"pool": "MAX", "kernel_size": 2, "stride": 2}}),
        LayerDescriptor("ip1", "InnerProduct", ("pool1",), ("ip1",),
                        params={"inner_product_param": {"num_output": 10}}),
        LayerDescriptor("loss", "SoftmaxWithLoss", ("ip1",), ("loss",)),
    ]
    return NetDescriptor("lenet", {"data": ShapeSpec(28, 28, 1)}, layers)


def test_lenet_shapes():
    graph = convert(lenet())
    assert len(graph) == 4
    assert [node.name for node in graph] == ["conv1", "pool1", "ip1", "loss"]
    assert graph["conv1"].out_shape == ShapeSpec(24, 24, 20)
    assert graph["pool1"].out_shape == ShapeSpec(12, 12, 20)
    assert graph["ip1"].in_shape == ShapeSpec(12, 12, 20)
    assert graph["ip1"].out_shape == ShapeSpec(1, 1, 10)
    assert graph.out_shape == ShapeSpec(1, 1, 10)
    assert graph.summary() == {"conv": 1, "max-pool": 1, "fully-connected": 1, "activation": 1}
    assert graph[2].position == 3


def test_graph_runs_as_module():
    module = convert(lenet(), ConverterConfig(seed=0)).to_module()
    y = module(torch.randn(2, 1, 28, 28))
    assert tuple(y.shape) == (2, 10)
    assert torch.allclose(y.sum(dim=1), torch.ones(2))


def test_seeded_conversion_is_repeatable():
    config = ConverterConfig(seed=7)
    first, second = convert(lenet(), config), convert(lenet(), config)
    assert first.structure() == second.structure()
    for a, b in zip(first, second):
        for wa, wb in zip(a.weights, b.weights):
            if wa is None:
                assert wb is None
            else:
                assert torch.equal(wa, wb)


def test_unseeded_conversion_has_same_structure():
    assert convert(lenet()).structure() == convert(lenet()).structure()


def test_input_shape_override():
    graph = convert(lenet(), ConverterConfig(input_shapes={"data": ShapeSpec(32, 32, 1)}))
    assert graph["conv1"].out_shape == ShapeSpec(28, 28, 20)


def test_error_carries_layer_context():
    net = lenet()
    net.layers[3] = LayerDescriptor(
        "ip1", "InnerProduct", ("pool1",), ("ip1",),
        params={"inner_product_param": {"num_output": 10}},
        blobs=(WeightBlob(np.zeros(5)),),
    )
    with pytest.raises(WeightSizeMismatch) as info:
        convert(net)
    err = info.value
    assert err.layer_name == "ip1"
    assert err.layer_type == "InnerProduct"
    assert err.position == 3
    assert "layer #3 'ip1'" in str(err)


def test_unsupported_layer_aborts():
    net = lenet()
    net.layers.insert(2, LayerDescriptor("scale", "Scale", ("conv1",), ("conv1",)))
    with pytest.raises(UnsupportedLayer) as info:
        convert(net)
    assert info.value.position == 2
    assert isinstance(info.value, ConversionError)


def test_unknown_input():
    net = lenet()
    net.layers[1] = LayerDescriptor("conv1", "Convolution", ("images",), ("conv1",),
                                    params={"convolution_param": {"num_output": 20, "kernel_size": 5}})
    with pytest.raises(UnknownInput) as info:
        convert(net)
    assert info.value.layer_name == "conv1"


def test_empty_output_rejected():
    with pytest.raises(UnsupportedShape):
        convert(lenet(), ConverterConfig(input_shapes={"data": ShapeSpec(4, 4, 1)}))


def test_in_place_layers_chain():
    net = lenet()
    net.layers.insert(2, LayerDescriptor("relu1", "ReLU", ("conv1",), ("conv1",)))
    graph = convert(net)
    assert graph["relu1"].out_shape == ShapeSpec(24, 24, 20)
    assert graph["pool1"].in_shape == ShapeSpec(24, 24, 20)


def test_pretrained_weights_are_used():
    net = lenet()
    net.layers[3] = LayerDescriptor(
        "ip1", "InnerProduct", ("pool1",), ("ip1",),
        params={"inner_product_param": {"num_output": 10}},
        blobs=(WeightBlob(np.ones(10 * 2880)), WeightBlob(np.arange(10))),
    )
    graph = convert(net)
    weight, bias = graph["ip1"].weights
    assert bool((weight == 1).all())
    assert bias.tolist() == [float(v) for v in range(10)]


def test_pooling_that_does_not_tile_warns():
    net = NetDescriptor("p", {"data": ShapeSpec(5, 5, 1)}, [
        LayerDescriptor("pool", "Pooling", ("data",), ("pool",),
                        params={"pooling_param": {"kernel_size": 2}}),
    ])
    with pytest.warns(UserWarning):
        graph = convert(net)
    assert graph.out_shape == ShapeSpec(2, 2, 1)


def test_conversion_logs(caplog):
    with caplog.at_level(logging.DEBUG, logger="caffebridge"):
        convert(lenet())
    messages = [record.getMessage() for record in caplog.records]
    assert any("skipping Data layer 'data'" in m for m in messages)
    assert any(m.startswith("converted net 'lenet'") for m in messages)


def test_reload_weights():
    graph = convert(lenet(), ConverterConfig(seed=1))
    trained = lenet()
    trained.layers[1] = LayerDescriptor(
        "conv1", "Convolution", ("data",), ("conv1",),
        params={"convolution_param": {"num_output": 20, "kernel_size": 5}},
        blobs=(WeightBlob(np.full(20 * 25, 0.5)), WeightBlob(np.zeros(20))),
    )
    reloaded = reload_weights(graph, trained)
    assert reloaded == 2  # conv1 and pool1
    weight, bias = graph["conv1"].weights
    assert bool((weight == 0.5).all())
    assert bool((bias == 0).all())


def test_reload_without_matching_node_warns():
    graph = convert(lenet())
    net = NetDescriptor("other", {}, [
        LayerDescriptor("deconv", "Deconvolution", ("data",), ("deconv",),
                        params={"convolution_param": {"num_output": 2, "kernel_size": 2}},
                        blobs=(WeightBlob(np.zeros(8)), WeightBlob(np.zeros(2)))),
    ])
    with pytest.warns(UserWarning, match="no node matches"):
        assert reload_weights(graph, net) == 0


def test_top_level_exports():
    assert cb.__version__
    assert callable(cb.convert)
    assert issubclass(cb.WeightSizeMismatch, cb.ConversionError)


def fc_batchnorm(blobs=()):
    return NetDescriptor("fc_bn", {"data": ShapeSpec(2, 2, 1)}, [
        LayerDescriptor("fc", "InnerProduct", ("data",), ("fc",),
                        params={"inner_product_param": {"num_output": 3}}),
        LayerDescriptor("bn", "BatchNorm", ("fc",), ("fc",),
                        blobs=tuple(WeightBlob(np.asarray(b, dtype=np.float32)) for b in blobs)),
    ])


def test_inner_product_features_are_channels():
    graph = convert(fc_batchnorm([[2, 4, 6], [2, 2, 2], [2]]))
    assert graph["fc"].out_shape == ShapeSpec(1, 1, 3)
    assert graph["bn"].in_shape.depth == 3
    mean, var = graph["bn"].kernel.statistics()
    assert mean.tolist() == [1.0, 2.0, 3.0]
    assert var.tolist() == [1.0, 1.0, 1.0]


def test_inner_product_then_batchnorm_runs():
    module = convert(fc_batchnorm(), ConverterConfig(seed=3)).to_module()
    y = module(torch.randn(2, 1, 2, 2))
    assert tuple(y.shape) == (2, 3)


def test_reload_pairs_layers_without_blobs():
    def net(c2_blobs=()):
        return NetDescriptor("two_convs", {"data": ShapeSpec(4, 4, 2)}, [
            LayerDescriptor("c1", "Convolution", ("data",), ("c1",),
                            params={"convolution_param": {"num_output": 2, "kernel_size": 1}}),
            LayerDescriptor("c2", "Convolution", ("c1",), ("c2",),
                            params={"convolution_param": {"num_output": 2, "kernel_size": 1}},
                            blobs=c2_blobs),
        ])

    graph = convert(net(), ConverterConfig(seed=5))
    c1_before = graph["c1"].weights[0].clone()
    trained = net((WeightBlob(np.full(4, 7.0)), WeightBlob(np.zeros(2))))

    assert reload_weights(graph, trained) == 1
    assert torch.equal(graph["c1"].weights[0], c1_before)
    assert bool((graph["c2"].weights[0] == 7).all())
