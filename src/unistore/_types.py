"""Type aliases used throughout unistore."""

from __future__ import annotations

import os  # noqa: TC003
from collections.abc import Callable
from typing import Union

from unistore._progress import ProgressEvent

PathLike = Union[str, "os.PathLike[str]"]  # noqa: UP007
Content = bytes | str
ProgressCallback = Callable[[ProgressEvent], None]
