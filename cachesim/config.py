import json
from dataclasses import dataclass, fields
from typing import Optional

from cachesim.cache import Organization
from cachesim.eviction import to_policy

# --associativity values with a special meaning; anything else is a way count
FULLY_ASSOCIATIVE = 0
DIRECT_MAPPED = 1

VALID_WAYS = (2, 4, 8, 16, 32)


class InvalidGeometryError(ValueError):
    pass


def is_int(x) -> bool:
    return isinstance(x, int) and not isinstance(x, bool)


def valid_pow2(x) -> bool:
    return is_int(x) and any(x == 1 << i for i in range(31))


def valid_assoc(x) -> bool:
    return is_int(x) and x in VALID_WAYS


@dataclass
class CacheConfig:
    cache_size: int = 1024
    block_size: int = 64
    associativity: int = DIRECT_MAPPED
    policy: str = "lru"
    trace_path: Optional[str] = None
    seed: Optional[int] = None

    @property
    def organization(self) -> Organization:
        if self.associativity == FULLY_ASSOCIATIVE:
            return Organization.FULLY_ASSOCIATIVE
        if self.associativity == DIRECT_MAPPED:
            return Organization.DIRECT_MAPPED
        return Organization.SET_ASSOCIATIVE

    @property
    def ways(self) -> int:
        match self.organization:
            case Organization.FULLY_ASSOCIATIVE:
                return self.cache_size // self.block_size
            case Organization.DIRECT_MAPPED:
                return 1
            case _:
                return self.associativity

    def validate(self):
        if not is_int(self.associativity):
            raise InvalidGeometryError(f"Invalid Associativity {self.associativity}")
        if not valid_pow2(self.cache_size):
            raise InvalidGeometryError(f"Invalid cache size {self.cache_size}")
        if not valid_pow2(self.block_size):
            raise InvalidGeometryError(f"Invalid block size {self.block_size}")
        if self.block_size > self.cache_size:
            raise InvalidGeometryError(f"Block size {self.block_size} larger than cache size {self.cache_size}")
        if self.organization == Organization.SET_ASSOCIATIVE:
            if not valid_assoc(self.associativity):
                raise InvalidGeometryError(f"Invalid Associativity {self.associativity}")
            num_blocks = self.cache_size // self.block_size
            if num_blocks % self.associativity != 0:
                raise InvalidGeometryError(
                    f"Associativity {self.associativity} does not divide {num_blocks} blocks"
                )
        try:
            to_policy(self.policy)
        except ValueError as e:
            raise InvalidGeometryError(f"Invalid replacement policy {self.policy}") from e
        return self

    def update(self, values: dict):
        """Overrides fields with the non-None entries of values."""
        if not isinstance(values, dict):
            raise InvalidGeometryError(f"Configuration must be an object, got {type(values).__name__}")
        known = {f.name for f in fields(self)}
        for key, value in values.items():
            if key not in known:
                raise InvalidGeometryError(f"Unknown configuration key {key!r}")
            if value is not None:
                setattr(self, key, value)
        return self


def load_config(path) -> CacheConfig:
    with open(path, "r") as f:
        return CacheConfig().update(json.load(f))
