import argparse
import sys

from cachesim.cache import Organization, new_cache
from cachesim.config import CacheConfig, load_config
from cachesim.eviction import POLICY_NAMES, to_policy
from cachesim.logger import FileLogger
from cachesim.simulate import simulate
from cachesim.traces import TraceFormatError, read_trace


def get_args(argv=None):
    parser = argparse.ArgumentParser(description="Simulate a cache over a memory access trace")
    parser.add_argument("--config", type=str, help="JSON file with any of the options below")
    parser.add_argument("--cache_size", type=int, help="Cache size in bytes (power of two)")
    parser.add_argument("--block_size", type=int, help="Block size in bytes (power of two)")
    parser.add_argument(
        "--associativity",
        type=int,
        help="0 = fully associative, 1 = direct mapped, 2/4/8/16/32 = set associative",
    )
    parser.add_argument("--policy", type=str, help="random, lru or plru (or 0, 1, 2)")
    parser.add_argument("--trace_path", type=str, help="Trace file, one '0xADDRESS op' per line")
    parser.add_argument("--seed", type=int, help="Seed for the random replacement policy")
    parser.add_argument("--log_file", type=str, help="Write a log to this file")
    parser.add_argument("--dump", action="store_true", help="Print every block after the run")
    parser.add_argument("--no_progress", action="store_true", help="Hide the progress bar")
    return parser.parse_args(argv)


def get_config(args) -> CacheConfig:
    config = load_config(args.config) if args.config else CacheConfig()
    return config.update(
        {
            "cache_size": args.cache_size,
            "block_size": args.block_size,
            "associativity": args.associativity,
            "policy": args.policy,
            "trace_path": args.trace_path,
            "seed": args.seed,
        }
    )


def main(argv=None):
    args = get_args(argv)

    print("***** Cache Simulator Start *****")
    try:
        config = get_config(args).validate()
    except (ValueError, OSError) as e:
        print(e, file=sys.stderr)
        return 1
    if config.trace_path is None:
        print("No trace file given, use --trace_path", file=sys.stderr)
        return 1

    print("***********************")
    print("Cache Settings for Simulation")
    print(config.cache_size)
    print(config.block_size)

    organization = config.organization
    match organization:
        case Organization.DIRECT_MAPPED:
            print("Direct Mapped Cache")
        case Organization.FULLY_ASSOCIATIVE:
            print("Fully Associative Cache")
        case Organization.SET_ASSOCIATIVE:
            print(f"{config.associativity} Way Set Associative Cache")
    print(POLICY_NAMES[to_policy(config.policy)])

    try:
        trace = read_trace(config.trace_path)
    except FileNotFoundError:
        print(f"{config.trace_path} not found", file=sys.stderr)
        return 1
    except TraceFormatError as e:
        print(e, file=sys.stderr)
        return 1

    logger = FileLogger("cachesim", filename=args.log_file) if args.log_file else None
    if logger is not None:
        logger.log_settings(config)

    cache = new_cache(
        organization,
        config.cache_size,
        config.block_size,
        ways=config.ways,
        policy=config.policy,
        seed=config.seed,
        logger=logger,
    )
    stats = simulate(cache, trace, progress=not args.no_progress, logger=logger)
    if logger is not None:
        logger.close()

    print(stats.report())
    if args.dump:
        print(cache.format_dump())
    print("*****************Simulation End**************")
    return 0


if __name__ == "__main__":
    sys.exit(main())
