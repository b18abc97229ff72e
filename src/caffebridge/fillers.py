"""Weight-initializer registry used when a layer carries no pretrained blobs."""

from typing import Callable, Dict, List, Optional
import math

import torch

from .ir import FillerSpec


class Filler:
    """Initialization strategy for one weight tensor."""

    name = "filler"

    def __init__(self, spec: FillerSpec):
        self.spec = spec

    def fill(self,
             tensor: torch.Tensor,
             fan_in: int,
             fan_out: int,
             generator: Optional[torch.Generator] = None) -> torch.Tensor:
        """
        Fill ``tensor`` in place.

        Args:
            tensor: Destination tensor
            fan_in: Number of inputs feeding one output unit
            fan_out: Number of outputs fed by one input unit
            generator: Optional random generator for reproducible fills

        Returns:
            The filled tensor
        """
        raise NotImplementedError


class XavierFiller(Filler):
    """Uniform in [-s, s] with s = sqrt(3 / n), n chosen by variance_norm."""

    name = "xavier"

    def fill(self, tensor, fan_in, fan_out, generator=None):
        if self.spec.variance_norm == "FAN_OUT":
            n = fan_out
        elif self.spec.variance_norm == "AVERAGE":
            n = (fan_in + fan_out) / 2.0
        else:
            n = fan_in
        scale = math.sqrt(3.0 / max(n, 1))
        with torch.no_grad():
            return tensor.uniform_(-scale, scale, generator=generator)


class ConstantFiller(Filler):
    name = "constant"

    def fill(self, tensor, fan_in, fan_out, generator=None):
        with torch.no_grad():
            return tensor.fill_(self.spec.value)


class GaussianFiller(Filler):
    name = "gaussian"

    def fill(self, tensor, fan_in, fan_out, generator=None):
        with torch.no_grad():
            return tensor.normal_(self.spec.mean, self.spec.std, generator=generator)


class FillerRegistry:
    """
    Registry mapping filler identifiers to initialization strategies.
    Only registered identifiers are accepted from descriptors.
    """

    def __init__(self):
        """Initialize filler registry."""
        self.fillers: Dict[str, Callable[[FillerSpec], Filler]] = {}
        self._register_default_fillers()

    def _register_default_fillers(self):
        self.register(XavierFiller.name, XavierFiller)
        self.register(ConstantFiller.name, ConstantFiller)
        self.register(GaussianFiller.name, GaussianFiller)

    def register(self, name: str, factory: Callable[[FillerSpec], Filler]):
        """
        Register an initialization strategy.

        Args:
            name: Filler identifier as it appears in descriptors
            factory: Callable building a Filler from a FillerSpec
        """
        self.fillers[name.lower()] = factory

    def supports(self, name: str) -> bool:
        return name.lower() in self.fillers

    def create(self, spec: FillerSpec) -> Filler:
        """Instantiate the strategy for ``spec``; KeyError if unregistered."""
        return self.fillers[spec.type.lower()](spec)

    def list_fillers(self) -> List[str]:
        return sorted(self.fillers)


# Default strategies applied when a descriptor names no filler
DEFAULT_WEIGHT_FILLER = FillerSpec(type="xavier")
DEFAULT_BIAS_FILLER = FillerSpec(type="constant", value=0.0)

# Global registry instance
_global_registry = FillerRegistry()


def get_registry() -> FillerRegistry:
    """Get the global filler registry."""
    return _global_registry


def register_filler(name: str, factory: Callable[[FillerSpec], Filler]):
    """Register a filler in the global registry."""
    _global_registry.register(name, factory)
