from typing import Set


class AccessHistory:
    """
    Every block address ever presented to a cache.

    Only used to tell a compulsory miss (first touch of a block) from a
    recurring one. Grows by one entry per distinct block address, never shrinks.
    """

    def __init__(self):
        self.seen: Set[int] = set()

    def record_and_check(self, block_address: int) -> bool:
        """Returns True if block_address was seen before, records it otherwise."""
        if block_address in self.seen:
            return True
        self.seen.add(block_address)
        return False

    def __len__(self):
        return len(self.seen)
