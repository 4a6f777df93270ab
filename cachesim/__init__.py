from cachesim.cache import (
    AccessKind,
    Block,
    Cache,
    DirectMappedCache,
    FullyAssocCache,
    Organization,
    SetAssocCache,
    new_cache,
)
from cachesim.eviction import LRUPolicy, Policy, PseudoLRUPolicy, RandomPolicy, ReplacementPolicy
from cachesim.stats import AccessStats
