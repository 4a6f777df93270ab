import json
import logging
import random

import pytest

from cachesim.address import Geometry, decode
from cachesim.cache import AccessKind, DirectMappedCache, FullyAssocCache, SetAssocCache, new_cache
from cachesim.config import CacheConfig, InvalidGeometryError, load_config
from cachesim.eviction import LRUPolicy, Policy, PseudoLRUPolicy, RandomPolicy, make_policy, to_policy
from cachesim.history import AccessHistory
from cachesim.logger import FileLogger
from cachesim.main import main
from cachesim.simulate import simulate
from cachesim.stats import AccessStats
from cachesim.traces import TraceFormatError, parse_trace_line, read_trace

CACHE_SIZE = 1024
BLOCK_SIZE = 64


def tags(blocks):
    return [b.tag for b in blocks if b.valid]


def check_invariants(stats):
    assert stats.cache_access == stats.read_access + stats.write_access
    assert stats.cache_misses == stats.read_misses + stats.write_misses
    assert stats.cache_misses == stats.compulsory_misses + stats.capacity_misses + stats.conflict_misses


def test_decode():
    g = Geometry.direct_mapped(CACHE_SIZE, BLOCK_SIZE)
    assert (g.num_blocks, g.line_bits, g.index_bits) == (16, 6, 4)
    assert decode(0x0, g) == (0, 0, 0)
    assert decode(0x7F, g) == (1, 1, 0)
    assert decode(0x440, g) == (17, 1, 1)


def test_decode_set_associative_uses_block_index_bits():
    g = Geometry.set_associative(CACHE_SIZE, BLOCK_SIZE, 2)
    assert g.num_sets == 8
    # block 8 maps to set 0 with the same tag as block 0
    assert decode(0x200, g) == (8, 0, 0)
    assert decode(0x400, g) == (16, 0, 1)


def test_decode_fully_associative_single_set():
    g = Geometry.fully_associative(CACHE_SIZE, BLOCK_SIZE)
    assert (g.num_sets, g.ways) == (1, 16)
    assert decode(0xFFFF, g).set_index == 0


def test_history():
    h = AccessHistory()
    assert not h.record_and_check(5)
    assert h.record_and_check(5)
    assert not h.record_and_check(6)
    assert len(h) == 2


def test_lru_policy():
    policy = LRUPolicy(1, 4)
    blocks = ["a", "b", "c", "d"]
    assert policy.choose_victim(0, blocks) == 0
    policy.mark_accessed(0, blocks, 1)
    assert blocks == ["a", "c", "d", "b"]
    policy.mark_accessed(0, blocks, 0)
    assert blocks == ["c", "d", "b", "a"]
    assert policy.choose_victim(0, blocks) == 0


def test_random_policy():
    policy = RandomPolicy(2, 8, seed=1)
    victims = [policy.choose_victim(1, []) for _ in range(200)]
    assert all(0 <= v < 8 for v in victims)
    assert len(set(victims)) > 1

    other = RandomPolicy(2, 8, seed=1)
    assert victims == [other.choose_victim(1, []) for _ in range(200)]
    assert policy.dump_metadata(0) == []


def test_pseudo_lru_initial_metadata():
    policy = PseudoLRUPolicy(2, 4)
    assert policy.dump_metadata(0) == [0, 0, 0, -1, -1, -1, -1]
    assert policy.dump_metadata(1) == [0, 0, 0, -1, -1, -1, -1]


class FakeBlock:
    def __init__(self, tag):
        self.tag = tag


def test_pseudo_lru_toggles_every_ancestor():
    policy = PseudoLRUPolicy(1, 4)
    blocks = [FakeBlock(t) for t in (10, 11, 12, 13)]

    assert policy.choose_victim(0, blocks) == 0
    policy.mark_accessed(0, blocks, 0)
    assert policy.dump_metadata(0) == [1, 1, 0, 10, -1, -1, -1]

    assert policy.choose_victim(0, blocks) == 2
    policy.mark_accessed(0, blocks, 2)
    assert policy.dump_metadata(0) == [0, 1, 1, 10, -1, 12, -1]

    assert policy.choose_victim(0, blocks) == 1

    # marking the same way twice restores the bits on its path
    policy.mark_accessed(0, blocks, 3)
    policy.mark_accessed(0, blocks, 3)
    assert policy.dump_metadata(0)[:3] == [0, 1, 1]


def test_pseudo_lru_choose_victim_is_idempotent():
    policy = PseudoLRUPolicy(4, 8)
    blocks = [FakeBlock(t) for t in range(8)]
    rng = random.Random(3)
    for _ in range(50):
        policy.mark_accessed(2, blocks, rng.randrange(8))
        first = policy.choose_victim(2, blocks)
        assert all(policy.choose_victim(2, blocks) == first for _ in range(5))


def test_pseudo_lru_sets_are_independent():
    policy = PseudoLRUPolicy(2, 2)
    blocks = [FakeBlock(1), FakeBlock(2)]
    policy.mark_accessed(0, blocks, 0)
    assert policy.choose_victim(0, blocks) == 1
    assert policy.choose_victim(1, blocks) == 0


def test_policy_index_errors():
    for policy in (RandomPolicy(2, 4), LRUPolicy(2, 4), PseudoLRUPolicy(2, 4)):
        blocks = [FakeBlock(0) for _ in range(4)]
        with pytest.raises(IndexError):
            policy.choose_victim(2, blocks)
        with pytest.raises(IndexError):
            policy.mark_accessed(0, blocks, 4)
        with pytest.raises(IndexError):
            policy.mark_accessed(-1, blocks, 0)


def test_to_policy():
    assert to_policy("lru") == Policy.LRU
    assert to_policy("PLRU") == Policy.PSEUDO_LRU
    assert to_policy("pseudo_lru") == Policy.PSEUDO_LRU
    assert to_policy(0) == Policy.RANDOM
    assert to_policy("2") == Policy.PSEUDO_LRU
    assert isinstance(make_policy("random", 1, 2, seed=0), RandomPolicy)
    with pytest.raises(ValueError):
        to_policy("fifo")
    with pytest.raises(ValueError):
        to_policy(3)


def test_direct_mapped_hit_after_compulsory_misses():
    cache = DirectMappedCache(CACHE_SIZE, BLOCK_SIZE)
    for address in (0x0, 0x40, 0x0):
        cache.read(address)
    stats = cache.stats()
    assert stats.cache_access == 3
    assert stats.read_access == 3
    assert stats.compulsory_misses == 2
    assert stats.cache_misses == 2
    assert stats.hits == 1
    assert stats.conflict_misses == 0
    assert stats.capacity_misses == 0


def test_direct_mapped_conflict_misses():
    cache = DirectMappedCache(CACHE_SIZE, BLOCK_SIZE)
    for i in range(10):
        cache.read(0x0 if i % 2 == 0 else 0x400)
    stats = cache.stats()
    assert stats.compulsory_misses == 2
    assert stats.conflict_misses == 8
    assert stats.cache_misses == 10
    assert stats.capacity_misses == 0
    check_invariants(stats)


def test_write_then_read_is_a_dirty_hit():
    cache = DirectMappedCache(CACHE_SIZE, BLOCK_SIZE)
    cache.write(0x80)
    cache.read(0x84)
    stats = cache.stats()
    assert stats.cache_misses == 1
    assert stats.write_misses == 1
    assert stats.read_misses == 0
    assert cache.sets[2][0].dirty
    assert cache.sets[2][0].valid


def test_direct_mapped_dirty_eviction():
    cache = DirectMappedCache(CACHE_SIZE, BLOCK_SIZE)
    cache.write(0x0)
    cache.read(0x400)
    block = cache.sets[0][0]
    assert cache.stats().dirty_blocks_evicted == 1
    assert not block.dirty
    assert block.tag == 1

    cache.write(0x0)
    assert block.dirty and block.tag == 0
    stats = cache.stats()
    assert stats.conflict_misses == 1
    assert stats.write_misses == 2
    assert stats.dirty_blocks_evicted == 1


def test_empty_fill_is_not_an_eviction():
    cache = SetAssocCache(CACHE_SIZE, BLOCK_SIZE, 2, "lru")
    cache.write(0x0)
    cache.write(0x400)
    stats = cache.stats()
    assert stats.dirty_blocks_evicted == 0
    assert stats.capacity_misses == 0
    assert tags(cache.sets[0]) == [0, 1]


def test_fully_associative_lru_capacity_miss():
    cache = FullyAssocCache(CACHE_SIZE, BLOCK_SIZE, "lru")
    ways = cache.ways
    for k in range(ways + 1):
        cache.read(k * CACHE_SIZE)
    assert 0 not in tags(cache.sets[0])
    assert cache.stats().compulsory_misses == ways + 1

    cache.read(0)
    stats = cache.stats()
    assert stats.capacity_misses == 1
    assert stats.cache_misses == ways + 2
    assert tags(cache.sets[0]) == list(range(2, ways + 1)) + [0]


def test_set_associative_lru_evicts_least_recently_used():
    cache = new_cache("set", CACHE_SIZE, BLOCK_SIZE, ways=2, policy="lru")
    for address in (0x0, 0x400, 0x800):
        cache.read(address)
    assert tags(cache.sets[0]) == [1, 2]

    cache.read(0x0)
    stats = cache.stats()
    assert stats.cache_access == 4
    assert stats.compulsory_misses == 3
    assert stats.capacity_misses == 1
    assert stats.conflict_misses == 0
    assert tags(cache.sets[0]) == [2, 0]


def test_lru_hit_refreshes_recency():
    cache = new_cache("set", CACHE_SIZE, BLOCK_SIZE, ways=2, policy="lru")
    for address in (0x0, 0x400, 0x0, 0x800):
        cache.read(address)
    assert tags(cache.sets[0]) == [0, 2]


def test_set_associative_tag_aliasing():
    # blocks 0 and 8 share set 0 and, with the tag taken above log2(num_blocks), the tag too
    cache = new_cache("set", CACHE_SIZE, BLOCK_SIZE, ways=2, policy="lru")
    cache.read(0x0)
    cache.read(0x200)
    stats = cache.stats()
    assert stats.compulsory_misses == 2
    assert tags(cache.sets[0]) == [0]


def test_fully_associative_pseudo_lru():
    cache = new_cache("fully", 256, BLOCK_SIZE, policy="plru")
    for k in range(4):
        cache.read(k * 256)
    assert cache.policy.dump_metadata(0) == [0, 0, 0, 0, 1, 2, 3]

    cache.read(4 * 256)
    cache.read(5 * 256)
    assert [b.tag for b in cache.sets[0]] == [4, 1, 5, 3]

    cache.read(0)
    assert [b.tag for b in cache.sets[0]] == [4, 0, 5, 3]
    stats = cache.stats()
    assert stats.compulsory_misses == 6
    assert stats.capacity_misses == 1


def test_random_policy_cache_is_reproducible():
    rng = random.Random(7)
    trace = [(AccessKind.READ if rng.random() < 0.7 else AccessKind.WRITE, rng.randrange(1 << 14)) for _ in range(2000)]
    a = new_cache("set", CACHE_SIZE, BLOCK_SIZE, ways=4, policy="random", seed=11)
    b = new_cache("set", CACHE_SIZE, BLOCK_SIZE, ways=4, policy="random", seed=11)
    assert simulate(a, trace, progress=False) == simulate(b, trace, progress=False)
    assert a.dump() == b.dump()


@pytest.mark.parametrize(
    "organization,ways,policy",
    [
        ("direct", 1, "lru"),
        ("fully", 16, "random"),
        ("fully", 16, "lru"),
        ("fully", 16, "plru"),
        ("set", 2, "random"),
        ("set", 4, "lru"),
        ("set", 8, "plru"),
    ],
)
def test_miss_accounting_on_random_trace(organization, ways, policy):
    cache = new_cache(organization, CACHE_SIZE, BLOCK_SIZE, ways=ways, policy=policy, seed=0)
    rng = random.Random(42)
    seen = set()
    for _ in range(3000):
        address = rng.randrange(1 << 15)
        kind = AccessKind.READ if rng.random() < 0.6 else AccessKind.WRITE
        before = cache.stats()
        cache.access(kind, address)
        after = cache.stats()

        check_invariants(after)
        block_address = address >> 6
        if block_address in seen:
            assert after.compulsory_misses == before.compulsory_misses
        else:
            assert after.compulsory_misses == before.compulsory_misses + 1
            seen.add(block_address)
        assert after.cache_misses - before.cache_misses <= 1

    stats = cache.stats()
    assert stats.compulsory_misses == len(seen)
    if organization == "direct":
        assert stats.capacity_misses == 0
    else:
        assert stats.conflict_misses == 0


def test_blocks_never_become_invalid():
    cache = new_cache("set", CACHE_SIZE, BLOCK_SIZE, ways=4, policy="plru")
    rng = random.Random(1)
    valid = 0
    for _ in range(500):
        cache.read(rng.randrange(1 << 14))
        now_valid = sum(row[2] for row in cache.dump())
        assert now_valid >= valid
        valid = now_valid


def test_stats_snapshot_is_a_copy():
    cache = DirectMappedCache(CACHE_SIZE, BLOCK_SIZE)
    cache.read(0)
    stats = cache.stats()
    cache.read(0x40)
    assert stats.cache_access == 1
    assert cache.stats().cache_access == 2


def test_stats_report():
    stats = AccessStats(cache_access=4, read_access=3, write_access=1, cache_misses=1, compulsory_misses=1, read_misses=1)
    report = stats.report()
    assert report.splitlines()[0] == "****************************"
    assert "Cache Access :4" in report
    assert "Dirty Blocks evicted :0" in report
    assert stats.hit_rate == 0.75
    assert stats.miss_rate == 0.25
    assert AccessStats().hit_rate == 0.0
    assert list(stats.as_dict())[0] == "cache_access"


def test_dump():
    cache = new_cache("set", CACHE_SIZE, BLOCK_SIZE, ways=2, policy="plru")
    cache.write(0x400)
    rows = cache.dump()
    assert len(rows) == 16
    assert rows[0] == (0, 0, True, True, 1)
    assert rows[1] == (0, 1, False, False, 0)
    text = cache.format_dump()
    assert text.splitlines()[:2] == ["**** Set 0", "0 V 1 D 1 T 1"]

    direct = DirectMappedCache(CACHE_SIZE, BLOCK_SIZE)
    direct.read(0x40)
    assert direct.format_dump().splitlines()[1] == "1 V 1 D 0 T 0"


def test_new_cache_organizations():
    assert isinstance(new_cache("direct", CACHE_SIZE, BLOCK_SIZE), DirectMappedCache)
    fully = new_cache("fully", CACHE_SIZE, BLOCK_SIZE, policy="plru")
    assert (fully.num_sets, fully.ways) == (1, 16)
    assert isinstance(fully.policy, PseudoLRUPolicy)
    assert (new_cache("set", CACHE_SIZE, BLOCK_SIZE, ways=4).num_sets) == 4
    with pytest.raises(ValueError):
        new_cache("victim", CACHE_SIZE, BLOCK_SIZE)


def test_config_validation():
    CacheConfig(cache_size=1024, block_size=64, associativity=8).validate()
    CacheConfig(associativity=0, policy="plru").validate()
    bad = [
        CacheConfig(cache_size=1000),
        CacheConfig(block_size=48),
        CacheConfig(cache_size=64, block_size=128),
        CacheConfig(associativity=6),
        CacheConfig(associativity=32),
        CacheConfig(policy="fifo"),
        CacheConfig(cache_size=1024.0),
        CacheConfig(block_size=True),
        CacheConfig(associativity=2.0),
        CacheConfig(associativity="4"),
    ]
    for config in bad:
        with pytest.raises(InvalidGeometryError):
            config.validate()


def test_config_organization_and_ways():
    assert CacheConfig(associativity=0).ways == 16
    assert CacheConfig(associativity=1).ways == 1
    assert CacheConfig(associativity=4).ways == 4


def test_load_config(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"cache_size": 2048, "associativity": 4, "policy": "plru"}))
    config = load_config(path)
    assert (config.cache_size, config.block_size, config.ways) == (2048, 64, 4)

    path.write_text(json.dumps({"cache_sz": 2048}))
    with pytest.raises(InvalidGeometryError):
        load_config(path)

    path.write_text(json.dumps([1, 2]))
    with pytest.raises(InvalidGeometryError):
        load_config(path)


def test_parse_trace_line():
    assert parse_trace_line("0x1fffff80 r") == (AccessKind.READ, 0x1FFFFF80)
    assert parse_trace_line("0x10 w") == (AccessKind.WRITE, 0x10)
    assert parse_trace_line("0x10 x") == (AccessKind.WRITE, 0x10)
    assert parse_trace_line("0x1ffffffff r") == (AccessKind.READ, 0xFFFFFFFF)
    with pytest.raises(TraceFormatError):
        parse_trace_line("r 0x10", 3)
    with pytest.raises(TraceFormatError):
        parse_trace_line("0xzz r")


def test_read_trace(tmp_path):
    path = tmp_path / "trace.txt"
    path.write_text("0x0 r\n\n0x40 w\n#eof\n0x80 r\n")
    assert read_trace(path) == [(AccessKind.READ, 0x0), (AccessKind.WRITE, 0x40)]

    path.write_text("0x0 r\nbogus\n")
    with pytest.raises(TraceFormatError) as e:
        read_trace(path)
    assert e.value.line_no == 2


def test_simulate_logs(tmp_path):
    log_path = tmp_path / "log"
    logger = FileLogger("test", level=logging.DEBUG, filename=log_path)
    cache = new_cache("direct", CACHE_SIZE, BLOCK_SIZE, logger=logger)
    trace = [(AccessKind.WRITE, 0x0), (AccessKind.READ, 0x400), (AccessKind.READ, 0x0)]
    stats = simulate(cache, trace, progress=False, logger=logger)
    logger.close()

    assert stats.cache_access == 3
    assert stats.conflict_misses == 1
    text = log_path.read_text()
    assert "Evict,0,0,0,1,1" in text
    assert "Stats,3,2,1,3,2,0,1,2,1,1,2\n" in text
    assert logger.file_handler is None


def test_main(tmp_path, capsys):
    trace = tmp_path / "trace.txt"
    trace.write_text("0x0 r\n0x40 r\n0x0 w\n")
    args = ["--cache_size", "1024", "--block_size", "64", "--associativity", "1", "--trace_path", str(trace)]
    assert main(args + ["--no_progress", "--dump"]) == 0
    out = capsys.readouterr().out
    assert "Direct Mapped Cache" in out
    assert "Cache Access :3" in out
    assert "Compulsory Misses :2" in out
    assert "Write Access :1" in out
    assert "0 V 1 D 1 T 0" in out


def test_main_with_config_file(tmp_path, capsys):
    trace = tmp_path / "trace.txt"
    trace.write_text("0x0 r\n0x400 r\n0x800 r\n0x0 r\n")
    config = tmp_path / "config.json"
    config.write_text(json.dumps({"associativity": 2, "policy": "lru", "trace_path": str(trace)}))
    assert main(["--config", str(config), "--no_progress"]) == 0
    out = capsys.readouterr().out
    assert "2 Way Set Associative Cache" in out
    assert "LRU" in out
    assert "Capacity Misses :1" in out


def test_main_errors(tmp_path, capsys):
    assert main(["--cache_size", "1000", "--trace_path", "x"]) == 1
    assert "Invalid cache size 1000" in capsys.readouterr().err

    assert main(["--trace_path", str(tmp_path / "missing.txt"), "--no_progress"]) == 1
    assert "not found" in capsys.readouterr().err

    assert main([]) == 1


def test_main_rejects_non_integer_geometry(tmp_path, capsys):
    trace = tmp_path / "trace.txt"
    trace.write_text("0x0 r\n")
    config = tmp_path / "config.json"
    config.write_text(json.dumps({"cache_size": 1024.0, "trace_path": str(trace)}))
    assert main(["--config", str(config), "--no_progress"]) == 1
    err = capsys.readouterr().err
    assert "Invalid cache size 1024.0" in err

    config.write_text(json.dumps([1, 2]))
    assert main(["--config", str(config), "--no_progress"]) == 1
    assert "Configuration must be an object" in capsys.readouterr().err


def test_set_associative_lru_dirty_eviction():
    cache = new_cache("set", CACHE_SIZE, BLOCK_SIZE, ways=2, policy="lru")
    cache.write(0x0)
    cache.read(0x400)
    cache.read(0x0)
    assert [(b.tag, b.dirty) for b in cache.sets[0]] == [(1, False), (0, True)]

    # the clean block is the least recently used one
    cache.read(0x800)
    assert cache.stats().dirty_blocks_evicted == 0
    assert [(b.tag, b.dirty) for b in cache.sets[0]] == [(0, True), (2, False)]

    cache.read(0xC00)
    stats = cache.stats()
    assert stats.dirty_blocks_evicted == 1
    assert stats.capacity_misses == 0
    assert [(b.tag, b.dirty) for b in cache.sets[0]] == [(2, False), (3, False)]


def test_lru_write_hit_marks_the_written_block():
    cache = new_cache("set", CACHE_SIZE, BLOCK_SIZE, ways=2, policy="lru")
    cache.read(0x0)
    cache.read(0x400)
    cache.write(0x0)
    assert [(b.tag, b.dirty) for b in cache.sets[0]] == [(1, False), (0, True)]

    cache.read(0x800)
    assert cache.stats().dirty_blocks_evicted == 0
    cache.read(0xC00)
    assert cache.stats().dirty_blocks_evicted == 1


def test_fully_associative_pseudo_lru_dirty_eviction():
    cache = new_cache("fully", 256, BLOCK_SIZE, policy="plru")
    for k in range(4):
        cache.read(k * 256)
    cache.write(256)
    assert [b.dirty for b in cache.sets[0]] == [False, True, False, False]
    assert cache.policy.dump_metadata(0)[:3] == [1, 1, 0]

    cache.read(4 * 256)
    assert cache.stats().dirty_blocks_evicted == 0
    assert [b.tag for b in cache.sets[0]] == [0, 1, 4, 3]

    cache.read(5 * 256)
    stats = cache.stats()
    assert stats.dirty_blocks_evicted == 1
    assert [(b.tag, b.dirty) for b in cache.sets[0]] == [(0, False), (5, False), (4, False), (3, False)]
    assert stats.write_misses == 0
