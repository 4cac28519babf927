import logging
import sys

# Attributes every LogRecord carries; anything else came in through `extra=`.
_RESERVED = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "asctime", "extra"}


class SafeExtraFormatter(logging.Formatter):
    """
    Formatter that renders the fields passed through `extra=`
    and never breaks when a record has none.
    """

    def format(self, record: logging.LogRecord) -> str:
        record.extra = {
            k: v for k, v in vars(record).items() if k not in _RESERVED
        }
        return super().format(record)


def setup_logging(level: str = "INFO") -> None:
    handler = logging.StreamHandler(sys.stdout)

    formatter = SafeExtraFormatter(
        fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s | %(extra)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)
