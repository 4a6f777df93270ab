import abc
import enum
import random
from typing import List, Optional

import numpy as np


class Policy(enum.Enum):
    RANDOM = "random"
    LRU = "lru"
    PSEUDO_LRU = "plru"


# numeric codes understood by the command line, in the order of the old menu
POLICY_CODES = {0: Policy.RANDOM, 1: Policy.LRU, 2: Policy.PSEUDO_LRU}

POLICY_NAMES = {
    Policy.RANDOM: "Random",
    Policy.LRU: "LRU",
    Policy.PSEUDO_LRU: "Pseudo LRU",
}


class ReplacementPolicy(abc.ABC):
    """Picks eviction victims within a set and tracks recency of ways."""

    def __init__(self, name, num_sets: int, ways: int):
        self.name = name
        self.num_sets = num_sets
        self.ways = ways

    def _check(self, set_index, way=None):
        if not 0 <= set_index < self.num_sets:
            raise IndexError(f"{self.name}: set index {set_index} out of range [0, {self.num_sets})")
        if way is not None and not 0 <= way < self.ways:
            raise IndexError(f"{self.name}: way {way} out of range [0, {self.ways})")

    def choose_victim(self, set_index: int, blocks: List) -> int:
        """Returns the way to evict from set_index. Does not touch recency state."""
        self._check(set_index)
        victim = self._choose_victim(set_index, blocks)
        assert 0 <= victim < self.ways, f"{self.name} policy chose way {victim} outside the set"
        return victim

    @abc.abstractmethod
    def _choose_victim(self, set_index: int, blocks: List) -> int:
        pass

    def mark_accessed(self, set_index: int, blocks: List, way: int):
        """Called by the cache every time a way is hit, filled or replaced."""
        self._check(set_index, way)
        self._mark_accessed(set_index, blocks, way)

    def _mark_accessed(self, set_index: int, blocks: List, way: int):
        pass

    def dump_metadata(self, set_index: int) -> List[int]:
        self._check(set_index)
        return []

    def __str__(self):
        return f"{self.name} policy ({self.num_sets} sets x {self.ways} ways)"


class RandomPolicy(ReplacementPolicy):
    def __init__(self, num_sets, ways, seed: Optional[int] = None):
        super().__init__("RANDOM", num_sets, ways)
        self.random_generator = random.Random(seed)

    def _choose_victim(self, set_index, blocks):
        return self.random_generator.randrange(self.ways)


class LRUPolicy(ReplacementPolicy):
    """
    True LRU. The order of the blocks inside a set is the recency order:
    index 0 holds the least recently used block, the last index the most
    recently used one. Marking a way moves its block to the back.
    """

    def __init__(self, num_sets, ways):
        super().__init__("LRU", num_sets, ways)

    def _choose_victim(self, set_index, blocks):
        return 0

    def _mark_accessed(self, set_index, blocks, way):
        blocks.append(blocks.pop(way))


class PseudoLRUPolicy(ReplacementPolicy):
    """
    Binary tree pseudo LRU.

    Each set owns a complete binary tree stored as a flat array of 2*ways-1
    ints. Slots [0, ways-1) are the internal direction bits (0 = go left,
    1 = go right), slots [ways-1, 2*ways-1) are the leaves, one per way.

    The leaves only record the tag last placed in that way; they are never
    read when walking the tree.

    Marking a way flips every ancestor of its leaf, whatever child the walk
    came from. This is not the textbook "point away from the accessed way"
    update, and victim selection depends on it.
    """

    def __init__(self, num_sets, ways):
        super().__init__("PSEUDO_LRU", num_sets, ways)
        self.meta_data = np.zeros((num_sets, 2 * ways - 1), dtype=np.int64)
        self.meta_data[:, ways - 1:] = -1

    def _choose_victim(self, set_index, blocks):
        tree = self.meta_data[set_index]
        current = 0
        while current < self.ways - 1:
            if tree[current] == 0:
                current = 2 * current + 1
            else:
                current = 2 * current + 2
        return current - (self.ways - 1)

    def _mark_accessed(self, set_index, blocks, way):
        tree = self.meta_data[set_index]
        current = self.ways - 1 + way
        tree[current] = blocks[way].tag
        while current > 0:
            current = (current - 1) // 2
            tree[current] = 0 if tree[current] else 1

    def dump_metadata(self, set_index):
        self._check(set_index)
        return self.meta_data[set_index].tolist()


def to_policy(policy) -> Policy:
    if isinstance(policy, Policy):
        return policy
    if isinstance(policy, int):
        if policy not in POLICY_CODES:
            raise ValueError(f"Unknown replacement policy code {policy}")
        return POLICY_CODES[policy]
    name = str(policy).strip().lower()
    if name.isdigit():
        return to_policy(int(name))
    for p in Policy:
        if name in (p.value, p.name.lower()):
            return p
    raise ValueError(f"Unknown replacement policy {policy!r}")


def make_policy(policy, num_sets: int, ways: int, seed: Optional[int] = None) -> ReplacementPolicy:
    match to_policy(policy):
        case Policy.RANDOM:
            return RandomPolicy(num_sets, ways, seed)
        case Policy.LRU:
            return LRUPolicy(num_sets, ways)
        case Policy.PSEUDO_LRU:
            return PseudoLRUPolicy(num_sets, ways)
