import logging


class FileLogger(logging.Logger):
    """Logger writing comma separated records, optionally to a file."""

    FORMAT = "%(asctime)s,%(name)s,%(levelname)s,%(message)s"

    def __init__(self, name, level=logging.INFO, filename=None, mode="a"):
        super().__init__(name, level)
        self.file_handler = None
        if filename is not None:
            self.attach_file(filename, mode)

    def attach_file(self, filename, mode="a"):
        if self.file_handler is not None:
            self.close()
        self.file_handler = logging.FileHandler(filename, mode=mode)
        self.file_handler.setLevel(self.level)
        self.file_handler.setFormatter(logging.Formatter(self.FORMAT))
        self.addHandler(self.file_handler)
        return self.file_handler

    def close(self):
        if self.file_handler is None:
            return
        self.removeHandler(self.file_handler)
        self.file_handler.close()
        self.file_handler = None

    def log_settings(self, config):
        message = f"Settings,{config.cache_size},{config.block_size},{config.associativity},{config.policy}"
        self.info(message)

    def log_eviction(self, set_index, way, old_tag, new_tag, dirty):
        message = f"Evict,{set_index},{way},{old_tag},{new_tag},{int(dirty)}"
        self.debug(message)

    def log_stats(self, stats, distinct_blocks):
        counters = ",".join(str(v) for v in stats.as_dict().values())
        self.info(f"Stats,{counters},{distinct_blocks}")
