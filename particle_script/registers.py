"""
Particle Script Register Allocator

A fixed arena of scratch registers tracked as a bit set. Running out is a
reported compile error; nothing ever wraps around.
"""

from typing import List
from .errors import RegisterError


REGISTER_COUNT = 32


class RegisterAllocator:
    """Hands out the lowest free register of a fixed-size arena."""

    def __init__(self, count: int = REGISTER_COUNT):
        self.count = count
        self.live = 0           # bit i set = register i in use
        self.high_water = 0     # registers the function needs at runtime

    @property
    def live_count(self) -> int:
        return bin(self.live).count('1')

    def is_live(self, index: int) -> bool:
        return bool(self.live >> index & 1)

    def alloc(self) -> int:
        """
        Allocate the lowest free register.

        Raises:
            RegisterError: If all registers are live
        """
        free = ~self.live & ((1 << self.count) - 1)
        if not free:
            raise RegisterError(f"Too many live registers, the limit is {self.count}")

        index = (free & -free).bit_length() - 1
        self.live |= 1 << index
        self.high_water = max(self.high_water, index + 1)
        return index

    def free(self, index: int) -> None:
        if not self.is_live(index):
            raise ValueError(f"Register {index} is not allocated")
        self.live &= ~(1 << index)

    def reserve(self, count: int) -> List[int]:
        """Allocate `count` registers that stay live for the whole function."""
        return [self.alloc() for _ in range(count)]
