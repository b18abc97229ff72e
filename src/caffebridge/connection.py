"""Channel connectivity for grouped convolution and deconvolution."""

from typing import Iterator, Optional, Tuple

import torch

from .errors import UnsupportedShape


class ConnectionTable:
    """
    Block-diagonal input/output channel connectivity.

    Output channel ``o`` is fed by input channel ``i`` iff both fall in the
    same group: ``i // (in_channels / groups) == o // (out_channels / groups)``.
    A single group is fully connected and never materializes a matrix.
    """

    def __init__(self, groups: int = 1, in_channels: int = 0, out_channels: int = 0):
        if groups < 1:
            raise UnsupportedShape(f"group count must be positive, got {groups}")
        if groups > 1 and (in_channels % groups or out_channels % groups):
            raise UnsupportedShape(
                f"channels ({in_channels} in, {out_channels} out) "
                f"are not divisible by group count {groups}"
            )
        self.groups = groups
        self.in_channels = in_channels
        self.out_channels = out_channels
        self._mask: Optional[torch.Tensor] = None

    @property
    def is_full(self) -> bool:
        return self.groups == 1

    @property
    def in_per_group(self) -> int:
        return self.in_channels // self.groups

    @property
    def out_per_group(self) -> int:
        return self.out_channels // self.groups

    def is_connected(self, o: int, i: int) -> bool:
        if self.is_full:
            return True
        return i // self.in_per_group == o // self.out_per_group

    def connected_pairs(self) -> Iterator[Tuple[int, int]]:
        """Yield every connected (output, input) channel pair in row order."""
        for o in range(self.out_channels):
            for i in range(self.in_channels):
                if self.is_connected(o, i):
                    yield o, i

    def num_connections(self) -> int:
        return self.groups * self.in_per_group * self.out_per_group

    def to_mask(self) -> torch.Tensor:
        """Boolean (out_channels, in_channels) matrix of the table."""
        if self._mask is None:
            if self.is_full:
                self._mask = torch.ones(self.out_channels, self.in_channels, dtype=torch.bool)
            else:
                out_group = torch.arange(self.out_channels) // self.out_per_group
                in_group = torch.arange(self.in_channels) // self.in_per_group
                self._mask = out_group.unsqueeze(1) == in_group.unsqueeze(0)
        return self._mask

    def __repr__(self) -> str:
        return (f"ConnectionTable(groups={self.groups}, in_channels={self.in_channels}, "
                f"out_channels={self.out_channels})")
