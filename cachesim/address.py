from dataclasses import dataclass
from typing import NamedTuple


class DecodedAddress(NamedTuple):
    block_address: int
    set_index: int
    tag: int


def log2(x: int) -> int:
    """Exact base-2 logarithm of a power of two."""
    return x.bit_length() - 1


@dataclass(frozen=True)
class Geometry:
    cache_size: int
    block_size: int
    num_sets: int
    ways: int

    @property
    def num_blocks(self) -> int:
        return self.cache_size // self.block_size

    @property
    def line_bits(self) -> int:
        return log2(self.block_size)

    @property
    def index_bits(self) -> int:
        # log2 of the block count, not of the set count: the tag split is the
        # same for every organization
        return log2(self.num_blocks)

    @classmethod
    def direct_mapped(cls, cache_size, block_size):
        return cls(cache_size, block_size, cache_size // block_size, 1)

    @classmethod
    def fully_associative(cls, cache_size, block_size):
        return cls(cache_size, block_size, 1, cache_size // block_size)

    @classmethod
    def set_associative(cls, cache_size, block_size, ways):
        return cls(cache_size, block_size, cache_size // block_size // ways, ways)


def decode(address: int, geometry: Geometry) -> DecodedAddress:
    block_address = address >> geometry.line_bits
    set_index = block_address % geometry.num_sets
    tag = address >> (geometry.line_bits + geometry.index_bits)
    return DecodedAddress(block_address, set_index, tag)
