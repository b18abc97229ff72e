#!/usr/bin/env python3
"""
Simple usage example for caffebridge
Converts a small LeNet-style network and runs it
"""

import logging

import torch

import caffebridge as cb


LENET = {
    "name": "lenet",
    "layer": [
        {"name": "data", "type": "Input", "top": ["data"],
         "input_param": {"shape": [{"dim": [1, 1, 28, 28]}]}},
        {"name": "conv1", "type": "Convolution", "bottom": ["data"], "top": ["conv1"],
         "convolution_param": {"num_output": 20, "kernel_size": 5,
                               "weight_filler": {"type": "xavier"}}},
        {"name": "pool1", "type": "Pooling", "bottom": ["conv1"], "top": ["pool1"],
         "pooling_param": {"pool": "MAX", "kernel_size": 2, "stride": 2}},
        {"name": "ip1", "type": "InnerProduct", "bottom": ["pool1"], "top": ["ip1"],
         "inner_product_param": {"num_output": 500}},
        {"name": "relu1", "type": "ReLU", "bottom": ["ip1"], "top": ["ip1"]},
        {"name": "ip2", "type": "InnerProduct", "bottom": ["ip1"], "top": ["ip2"],
         "inner_product_param": {"num_output": 10}},
        {"name": "prob", "type": "Softmax", "bottom": ["ip2"], "top": ["prob"]},
    ],
}


def example_preflight():
    """Check a network before converting it"""
    print("Example 1: Preflight check")
    print("-" * 40)

    report = cb.check_net(cb.net_from_dict(LENET))
    for finding in report.findings:
        print(f"  [{finding.position}] {finding.layer_name}: {finding.status}")
    print(f"Compatible: {report.compatible}")
    print()


def example_convert():
    """Convert and run the network"""
    print("Example 2: Convert and run")
    print("-" * 40)

    graph = cb.convert(LENET, cb.ConverterConfig(seed=0))
    print(cb.format_graph(graph))

    model = graph.to_module()
    probs = model(torch.randn(4, 1, 28, 28))
    print(f"Output shape: {tuple(probs.shape)}")
    print()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    example_preflight()
    example_convert()
