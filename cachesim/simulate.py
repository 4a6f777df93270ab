import typing

import tqdm

from cachesim.cache import AccessKind, Cache
from cachesim.logger import FileLogger
from cachesim.stats import AccessStats


def simulate(
    cache: Cache,
    accesses: typing.Iterable[typing.Tuple[AccessKind, int]],
    progress: bool = True,
    logger: typing.Optional[FileLogger] = None,
) -> AccessStats:
    """
    Feeds accesses to cache one at a time, in order, and returns the final stats
    :param cache: cache to drive
    :param accesses: iterable of (AccessKind, address) pairs
    :param progress: show a progress bar
    :param logger: if given, the final stats and the distinct block count are logged to it
    :return: snapshot of the cache counters after the last access
    """
    bar = tqdm.tqdm(accesses, disable=not progress)
    iters = 0
    for kind, address in bar:
        cache.access(kind, address)
        iters += 1
        if progress and iters % 1000 == 0:
            info = cache.access_info
            bar.set_description(
                f"misses={info.cache_misses} hit_ratio={round(info.hit_rate, 3)} distinct_blocks={len(cache.history)}"
            )
    stats = cache.stats()
    if logger is not None:
        logger.log_stats(stats, len(cache.history))
    return stats
