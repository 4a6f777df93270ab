import enum
from dataclasses import dataclass
from typing import List, Optional, Tuple

from cachesim.address import Geometry, decode
from cachesim.eviction import ReplacementPolicy, make_policy
from cachesim.history import AccessHistory
from cachesim.logger import FileLogger
from cachesim.stats import AccessStats

ASSERTS_ENABLED = True


class AccessKind(enum.Enum):
    READ = "r"
    WRITE = "w"


class Organization(enum.Enum):
    DIRECT_MAPPED = "direct"
    FULLY_ASSOCIATIVE = "fully"
    SET_ASSOCIATIVE = "set"


ORGANIZATION_NAMES = {
    Organization.DIRECT_MAPPED: "Direct Mapped Cache",
    Organization.FULLY_ASSOCIATIVE: "Fully Associative Cache",
    Organization.SET_ASSOCIATIVE: "Way Set Associative Cache",
}


@dataclass
class Block:
    """One cache line. The payload is never simulated, only its bookkeeping."""

    tag: int = 0
    valid: bool = False
    dirty: bool = False


class Cache:
    """
    A cache of num_sets sets with `ways` blocks each.

    All organizations share the same access protocol and only differ in
    their geometry, in whether a replacement policy is consulted and in how a
    miss on a previously seen block is labelled: direct-mapped caches call it
    a conflict miss, associative ones a capacity miss.
    """

    organization: Organization
    recurring_miss = "capacity_misses"

    def __init__(
        self,
        geometry: Geometry,
        policy: Optional[ReplacementPolicy] = None,
        logger: Optional[FileLogger] = None,
    ):
        self.geometry = geometry
        self.policy = policy
        self.logger = logger
        self.sets: List[List[Block]] = [
            [Block() for _ in range(geometry.ways)] for _ in range(geometry.num_sets)
        ]
        self.history = AccessHistory()
        self.access_info = AccessStats()

    @property
    def num_sets(self):
        return self.geometry.num_sets

    @property
    def ways(self):
        return self.geometry.ways

    def read(self, address: int):
        self.access(AccessKind.READ, address)

    def write(self, address: int):
        self.access(AccessKind.WRITE, address)

    def access(self, kind: AccessKind, address: int):
        is_write = kind == AccessKind.WRITE
        info = self.access_info

        info.cache_access += 1
        if is_write:
            info.write_access += 1
        else:
            info.read_access += 1

        block_address, set_index, tag = decode(address, self.geometry)
        previously_accessed = self.history.record_and_check(block_address)

        if not previously_accessed:
            self._count_miss("compulsory_misses", is_write)

        blocks = self.sets[set_index]
        found, empty = self._lookup(blocks, tag)

        if found is None:
            if empty is not None:
                block = blocks[empty]
                block.valid = True
                block.tag = tag
                found = empty
            else:
                if previously_accessed:
                    self._count_miss(self.recurring_miss, is_write)
                found = self._choose_victim(set_index, blocks)
                self._replace(set_index, found, blocks[found], tag)

        # the block has to be resolved before the policy reorders the set
        block = blocks[found]
        if is_write:
            block.dirty = True
        self._mark_accessed(set_index, blocks, found)

        if ASSERTS_ENABLED:
            assert info.cache_access == info.read_access + info.write_access, "access counters out of sync"
            assert info.cache_misses == info.read_misses + info.write_misses, "miss counters out of sync"
            assert (
                info.cache_misses == info.compulsory_misses + info.capacity_misses + info.conflict_misses
            ), "miss categories do not add up"

    def _lookup(self, blocks: List[Block], tag: int) -> Tuple[Optional[int], Optional[int]]:
        """Returns (way holding tag, first empty way); either may be None."""
        empty = None
        for way, block in enumerate(blocks):
            if not block.valid:
                if empty is None:
                    empty = way
            elif block.tag == tag:
                return way, empty
        return None, empty

    def _count_miss(self, category, is_write):
        info = self.access_info
        setattr(info, category, getattr(info, category) + 1)
        info.cache_misses += 1
        if is_write:
            info.write_misses += 1
        else:
            info.read_misses += 1

    def _choose_victim(self, set_index, blocks):
        return self.policy.choose_victim(set_index, blocks)

    def _mark_accessed(self, set_index, blocks, way):
        self.policy.mark_accessed(set_index, blocks, way)

    def _replace(self, set_index, way, victim: Block, tag):
        if self.logger is not None:
            self.logger.log_eviction(set_index, way, victim.tag, tag, victim.dirty)
        if victim.dirty:
            # simulated write back
            self.access_info.dirty_blocks_evicted += 1
            victim.dirty = False
        victim.tag = tag

    def stats(self) -> AccessStats:
        return self.access_info.snapshot()

    def dump(self) -> List[Tuple[int, int, bool, bool, int]]:
        return [
            (set_index, way, block.valid, block.dirty, block.tag)
            for set_index, blocks in enumerate(self.sets)
            for way, block in enumerate(blocks)
        ]

    def format_dump(self) -> str:
        lines = []
        for set_index, blocks in enumerate(self.sets):
            lines.append(f"**** Set {set_index}")
            for block in blocks:
                lines.append(f"{set_index} V {int(block.valid)} D {int(block.dirty)} T {block.tag}")
        return "\n".join(lines)

    def __str__(self):
        g = self.geometry
        return f"{ORGANIZATION_NAMES[self.organization]}: {g.cache_size}B, {g.block_size}B blocks, {g.num_sets} sets x {g.ways} ways"


class DirectMappedCache(Cache):
    """One block per set; the block an address maps to is always the victim."""

    organization = Organization.DIRECT_MAPPED
    recurring_miss = "conflict_misses"

    def __init__(self, cache_size, block_size, logger=None):
        super().__init__(Geometry.direct_mapped(cache_size, block_size), None, logger)

    def _choose_victim(self, set_index, blocks):
        return 0

    def _mark_accessed(self, set_index, blocks, way):
        pass

    def format_dump(self):
        lines = []
        for set_index, blocks in enumerate(self.sets):
            block = blocks[0]
            lines.append(f"{set_index} V {int(block.valid)} D {int(block.dirty)} T {block.tag}")
        return "\n".join(lines)


class FullyAssocCache(Cache):
    organization = Organization.FULLY_ASSOCIATIVE

    def __init__(self, cache_size, block_size, policy, seed=None, logger=None):
        geometry = Geometry.fully_associative(cache_size, block_size)
        super().__init__(geometry, make_policy(policy, geometry.num_sets, geometry.ways, seed), logger)

    def format_dump(self):
        lines = []
        for way, block in enumerate(self.sets[0]):
            lines.append(f"{way} V {int(block.valid)} D {int(block.dirty)} T {block.tag}")
        return "\n".join(lines)


class SetAssocCache(Cache):
    organization = Organization.SET_ASSOCIATIVE

    def __init__(self, cache_size, block_size, ways, policy, seed=None, logger=None):
        geometry = Geometry.set_associative(cache_size, block_size, ways)
        super().__init__(geometry, make_policy(policy, geometry.num_sets, geometry.ways, seed), logger)

    def __str__(self):
        return f"{self.ways} {super().__str__()}"


def to_organization(organization) -> Organization:
    if isinstance(organization, Organization):
        return organization
    name = str(organization).strip().lower()
    for o in Organization:
        if name in (o.value, o.name.lower()):
            return o
    raise ValueError(f"Unknown cache organization {organization!r}")


def new_cache(organization, cache_size, block_size, ways=1, policy="lru", seed=None, logger=None) -> Cache:
    """
    Builds a cache. Geometry is assumed to be valid already, see
    cachesim.config.CacheConfig.validate.
    """
    match to_organization(organization):
        case Organization.DIRECT_MAPPED:
            return DirectMappedCache(cache_size, block_size, logger=logger)
        case Organization.FULLY_ASSOCIATIVE:
            return FullyAssocCache(cache_size, block_size, policy, seed=seed, logger=logger)
        case Organization.SET_ASSOCIATIVE:
            return SetAssocCache(cache_size, block_size, ways, policy, seed=seed, logger=logger)
