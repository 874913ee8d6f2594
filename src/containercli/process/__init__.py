"""Process ownership and output draining."""

from .drain import Drainer, decode_output, read_to_end
from .handle import ProcessHandle, build_environment

__all__ = [
    "build_environment",
    "decode_output",
    "Drainer",
    "ProcessHandle",
    "read_to_end",
]
