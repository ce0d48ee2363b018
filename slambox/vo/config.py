"""Process-wide configuration read from a YAML parameter file."""

from __future__ import annotations

import logging
import threading
from os import PathLike
from typing import Any

import numpy as np
import yaml

logger = logging.getLogger(__name__)


class _ConfigLoader(yaml.SafeLoader):
    """Safe loader that also understands OpenCV matrix nodes."""


def _opencv_matrix(loader: yaml.SafeLoader, node: yaml.Node) -> np.ndarray:
    mapping = loader.construct_mapping(node, deep=True)
    try:
        return np.array(mapping["data"], dtype=float).reshape(
            int(mapping["rows"]), int(mapping["cols"])
        )
    except (KeyError, ValueError) as exc:
        raise yaml.constructor.ConstructorError(
            None, None, f"malformed matrix: {exc}", node.start_mark
        ) from exc


_ConfigLoader.add_constructor("tag:yaml.org,2002:opencv-matrix", _opencv_matrix)


def _strip_directive(text: str) -> str:
    if text.startswith("%YAML:"):
        _, _, rest = text.partition("\n")
        return rest
    return text


class Config:
    """Parameters shared by the whole program.

    Choose a file with :meth:`set_parameter_file`, then read values with
    :meth:`get`.
    """

    _values: dict[str, Any] | None = None
    _lock = threading.Lock()

    @classmethod
    def set_parameter_file(cls, filename: str | PathLike) -> None:
        """Load a parameter file, replacing any loaded before.

        A missing file raises ``FileNotFoundError`` and malformed content
        ``ValueError``; in both cases no parameters remain loaded.
        """
        with cls._lock:
            cls._values = None
            try:
                with open(filename, encoding="utf-8") as stream:
                    text = stream.read()
            except FileNotFoundError:
                logger.error("parameter file %s does not exist.", filename)
                raise
            try:
                data = yaml.load(_strip_directive(text), Loader=_ConfigLoader)
            except yaml.YAMLError as exc:
                raise ValueError(f"parameter file {filename} is not valid YAML: {exc}") from exc
            if data is None:
                data = {}
            if not isinstance(data, dict):
                raise ValueError(f"parameter file {filename} must hold a mapping")
            cls._values = data

    @classmethod
    def get(cls, key: str) -> Any:
        """The value of a parameter; an unknown key raises ``KeyError``."""
        with cls._lock:
            if cls._values is None:
                raise RuntimeError("no parameter file has been loaded")
            try:
                return cls._values[key]
            except KeyError:
                raise KeyError(f"parameter {key!r} is not set") from None