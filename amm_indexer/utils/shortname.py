import logging

class ShortNameFilter(logging.Filter):
    """Adds ``record.shortname`` = last two dotted segments of the logger name."""
    def filter(self, record):
        path = record.name.split(".")
        record.shortname = "-".join(path[-2:])
        return True
