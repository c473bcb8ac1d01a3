from __future__ import annotations

import os
import shlex
from typing import List, Union


def format_arguments(*args: Union[str, int, float, os.PathLike]) -> str:
    """
    Build an argument string from individual values.

    Each value is quoted so that ``split_arguments`` returns exactly the
    values given, whatever spaces or quotes they contain.
    """
    return shlex.join(str(arg) for arg in args)


def split_arguments(arguments: str) -> List[str]:
    """Split an argument string using POSIX shell-word rules."""
    if not arguments:
        return []
    return shlex.split(arguments)
