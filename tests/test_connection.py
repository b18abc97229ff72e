"""Connection table and shape propagation tests."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import pytest
import torch

from caffebridge import ConnectionTable, ShapeSpec, ShapeTable
from caffebridge.errors import UnknownInput, UnsupportedShape
from caffebridge.shapes import conv_out_length, deconv_out_length, pool_out_length


def test_single_group_is_fully_connected():
    table = ConnectionTable(1, 3, 4)
    assert table.is_full
    assert table.num_connections() == 12
    assert all(table.is_connected(o, i) for o in range(4) for i in range(3))
    assert bool(table.to_mask().all())


def test_grouped_table_is_block_diagonal():
    table = ConnectionTable(2, 4, 6)
    assert table.in_per_group == 2
    assert table.out_per_group == 3
    assert table.is_connected(0, 1)
    assert not table.is_connected(0, 2)
    assert table.is_connected(5, 3)

    pairs = list(table.connected_pairs())
    assert len(pairs) == table.num_connections() == 4 * 6 // 2
    assert pairs[0] == (0, 0)
    assert pairs[-1] == (5, 3)

    expected = torch.tensor([[o // 3 == i // 2 for i in range(4)] for o in range(6)])
    assert torch.equal(table.to_mask(), expected)


def test_group_count_must_divide_channels():
    with pytest.raises(UnsupportedShape):
        ConnectionTable(2, 3, 4)
    with pytest.raises(UnsupportedShape):
        ConnectionTable(0, 4, 4)


def test_output_lengths():
    assert conv_out_length(28, 5, 1, same=False) == 24
    assert conv_out_length(28, 5, 1, same=True) == 28
    assert conv_out_length(7, 3, 2, same=True) == 4
    assert conv_out_length(2, 3, 1, same=False) == 0
    assert deconv_out_length(4, 3, 2, same=False) == 9
    assert deconv_out_length(4, 3, 2, same=True) == 7
    assert pool_out_length(24, 2, 2) == 12
    assert pool_out_length(5, 2, 2) == 2


def test_shape_table_lookup_and_overwrite():
    table = ShapeTable({"data": ShapeSpec(28, 28, 1)})
    assert table.lookup("data") == ShapeSpec(28, 28, 1)
    assert "data" in table

    table.register("data", ShapeSpec(24, 24, 20))
    assert table.lookup("data") == ShapeSpec(24, 24, 20)
    assert len(table) == 1


def test_shape_table_unknown_input():
    table = ShapeTable()
    with pytest.raises(UnknownInput) as info:
        table.lookup("missing")
    assert info.value.ref == "missing"
    with pytest.raises(UnknownInput):
        table.lookup(None)


def test_shape_spec():
    shape = ShapeSpec(width=4, height=3, depth=2)
    assert shape.size() == 24
    assert shape.area() == 12
    assert shape.to_nchw() == (2, 3, 4)
    assert str(shape) == "4x3x2"
    with pytest.raises(ValueError):
        ShapeSpec(-1, 1, 1)
