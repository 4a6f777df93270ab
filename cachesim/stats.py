import dataclasses
from dataclasses import dataclass

RULE = "****************************"

REPORT_LABELS = [
    ("cache_access", "Cache Access"),
    ("read_access", "Read Access"),
    ("write_access", "Write Access"),
    ("cache_misses", "Cache Misses"),
    ("compulsory_misses", "Compulsory Misses"),
    ("capacity_misses", "Capacity Misses"),
    ("conflict_misses", "Conflict Misses"),
    ("read_misses", "Read Misses"),
    ("write_misses", "Write Misses"),
    ("dirty_blocks_evicted", "Dirty Blocks evicted"),
]


@dataclass
class AccessStats:
    """Access and miss counters of a single cache. Only the cache mutates them."""

    cache_access: int = 0
    read_access: int = 0
    write_access: int = 0
    cache_misses: int = 0
    compulsory_misses: int = 0
    capacity_misses: int = 0
    conflict_misses: int = 0
    read_misses: int = 0
    write_misses: int = 0
    dirty_blocks_evicted: int = 0

    def snapshot(self) -> "AccessStats":
        return dataclasses.replace(self)

    def as_dict(self):
        return dataclasses.asdict(self)

    @property
    def hits(self) -> int:
        return self.cache_access - self.cache_misses

    @property
    def hit_rate(self) -> float:
        if self.cache_access == 0:
            return 0.0
        return self.hits / self.cache_access

    @property
    def miss_rate(self) -> float:
        if self.cache_access == 0:
            return 0.0
        return self.cache_misses / self.cache_access

    def report(self) -> str:
        lines = [RULE]
        for field, label in REPORT_LABELS:
            lines.append(f"{label} :{getattr(self, field)}")
        return "\n".join(lines)

    def __str__(self):
        return self.report()
