"""Conversion pipeline: descriptor sequence -> graph of sized, filled kernels."""

from typing import Any, Dict, Mapping, Optional, Union
from dataclasses import dataclass, field
import logging
import warnings

import torch

from .decode import net_from_dict
from .errors import ConversionError, UnsupportedLayer
from .factory import LayerFactory
from .graph import Graph
from .ir import LayerKind, NetDescriptor, ShapeSpec
from .params import canonicalize
from .shapes import ShapeTable
from .support import layer_has_weights, layer_match, layer_skipped, layer_supported
from .transcode import has_loader, load_weights

logger = logging.getLogger(__name__)


@dataclass
class ConverterConfig:
    """Settings shared by every conversion run with one converter."""
    dtype: torch.dtype = torch.float32
    seed: Optional[int] = None  # seeds the fillers; None draws from the global generator
    input_shapes: Dict[str, ShapeSpec] = field(default_factory=dict)  # override net inputs
    check_unconnected_weights: bool = False


class Converter:
    """
    Converts network descriptors into graphs.

    A converter holds only its configuration; every call to ``convert`` gets
    its own shape table and random generator, so one converter may serve
    concurrent conversions.
    """

    def __init__(self, config: Optional[ConverterConfig] = None):
        """
        Initialize converter.

        Args:
            config: Conversion settings (defaults apply when omitted)
        """
        self.config = config or ConverterConfig()

    def _generator(self) -> Optional[torch.Generator]:
        if self.config.seed is None:
            return None
        generator = torch.Generator()
        generator.manual_seed(self.config.seed)
        return generator

    def _shape_table(self, net: NetDescriptor) -> ShapeTable:
        inputs = dict(net.inputs)
        inputs.update(self.config.input_shapes)
        return ShapeTable(inputs)

    def convert(self, net: NetDescriptor) -> Graph:
        """
        Convert ``net`` layer by layer, in sequence order.

        Args:
            net: Decoded network

        Returns:
            Graph holding one node per non-skipped layer

        Raises:
            ConversionError: the first failing layer aborts the conversion;
                the error carries that layer's name, type and position
        """
        shapes = self._shape_table(net)
        factory = LayerFactory(
            dtype=self.config.dtype,
            generator=self._generator(),
            check_unconnected_weights=self.config.check_unconnected_weights,
        )
        graph = Graph(name=net.name)
        skipped = 0

        for position, layer in enumerate(net.layers):
            if layer_skipped(layer.type):
                logger.debug("skipping %s layer '%s'", layer.type, layer.name)
                skipped += 1
                continue
            try:
                if not layer_supported(layer.type):
                    raise UnsupportedLayer(f"layer type '{layer.type}' is not supported")
                graph.nodes.append(factory.create(layer, shapes, position))
            except ConversionError as err:
                err.attach_layer(layer.name, layer.type, position)
                raise

        logger.info("converted net '%s': %d layers -> %d nodes (%d skipped), output %s",
                    net.name, len(net.layers), len(graph), skipped, graph.out_shape)
        return graph


def _as_net(net: Union[NetDescriptor, Mapping[str, Any]]) -> NetDescriptor:
    if isinstance(net, NetDescriptor):
        return net
    return net_from_dict(net)


def convert(net: Union[NetDescriptor, Mapping[str, Any]],
            config: Optional[ConverterConfig] = None) -> Graph:
    """
    Main conversion interface.

    Args:
        net: NetDescriptor, or a decoded network mapping
        config: Conversion settings

    Returns:
        Converted graph
    """
    return Converter(config).convert(_as_net(net))


def reload_weights(graph: Graph,
                   net: Union[NetDescriptor, Mapping[str, Any]],
                   config: Optional[ConverterConfig] = None) -> int:
    """
    Load the pretrained blobs of ``net`` into an already converted graph.

    Every loadable descriptor is paired with the next node, in order, whose
    kernel type it matches, and the pairing advances past that node even when
    the descriptor carries no blobs. Pooling descriptors get their constant
    fill re-applied.

    Args:
        graph: Previously converted graph
        net: Network holding the blobs
        config: Conversion settings (``check_unconnected_weights``)

    Returns:
        Number of nodes reloaded
    """
    net = _as_net(net)
    config = config or ConverterConfig()
    cursor = 0
    reloaded = 0

    for position, layer in enumerate(net.layers):
        kind = layer.kind
        if not layer_has_weights(layer.type) or not has_loader(kind):
            continue

        match = cursor
        while match < len(graph) and not layer_match(layer.type, graph[match].layer_type):
            match += 1
        if match == len(graph):
            warnings.warn(f"no node matches {layer.type} layer '{layer.name}'; weights not reloaded")
            continue

        node = graph[match]
        cursor = match + 1
        if not layer.blobs and kind is not LayerKind.POOLING:
            logger.debug("'%s' carries no blobs; node '%s' left as is", layer.name, node.name)
            continue
        try:
            load_weights(layer, node.kernel, canonicalize(layer), config.check_unconnected_weights)
        except ConversionError as err:
            err.attach_layer(layer.name, layer.type, position)
            raise
        logger.debug("reloaded '%s' into node '%s'", layer.name, node.name)
        reloaded += 1

    logger.info("reloaded %d nodes of '%s'", reloaded, graph.name)
    return reloaded
