from __future__ import annotations

import json
import logging
from typing import Any, Mapping

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

LOG_LEVELS = {
    "trace": TRACE,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}

LOGGER_NAME = "twitshot"

Tags = Mapping[str, Any]


def setup_logging(level: str) -> logging.Logger:
    logging.basicConfig(
        format="[%(asctime)s] [%(levelname)s] %(message)s",
        level=LOG_LEVELS.get(level, logging.INFO),
        force=True,
    )
    # uvicorn's access log duplicates our START/END lines
    logging.getLogger("uvicorn.access").disabled = True
    return logging.getLogger(LOGGER_NAME)


def _render_tags(tags: Tags) -> str:
    parts = []
    for key, value in tags.items():
        if value is None:
            parts.append(f"[{key}]")
        else:
            parts.append(f"[{key}={json.dumps(value)}]")
    return " ".join(parts)


class TaggedLogger(logging.LoggerAdapter):
    """Logger that prefixes every message with its ``[key=value]`` tags.

    Request handlers get a logger tagged with the request id and sub-tag it
    with the platform and post they are working on, so one grep on an id
    yields the whole life of a request.
    """

    def __init__(self, logger: logging.Logger, tags: Tags | None = None) -> None:
        super().__init__(logger, {})
        self.tags: dict[str, Any] = dict(tags or {})
        self._prefix = _render_tags(self.tags)

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        if self._prefix:
            return f"{self._prefix} {msg}", kwargs
        return msg, kwargs

    def set_tags(self, tags: Tags | str) -> "TaggedLogger":
        if isinstance(tags, str):
            tags = {tags: None}
        self.tags.update(tags)
        self._prefix = _render_tags(self.tags)
        return self

    def sub_tagged(self, tags: Tags | str) -> "TaggedLogger":
        if isinstance(tags, str):
            tags = {tags: None}
        return TaggedLogger(self.logger, {**self.tags, **tags})

    def trace(self, msg: Any, *args: Any, **kwargs: Any) -> None:
        self.log(TRACE, msg, *args, **kwargs)


def get_logger(tags: Tags | None = None) -> TaggedLogger:
    return TaggedLogger(logging.getLogger(LOGGER_NAME), tags)


def log_line(info: Mapping[str, Any]) -> str:
    return " ".join(f"{k}={json.dumps(v)}" for k, v in info.items() if v is not None)
