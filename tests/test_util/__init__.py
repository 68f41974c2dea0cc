import sys

from io import StringIO
from typing import ContextManager, Generator
from contextlib import contextmanager


@contextmanager
def CaptureStream(name: str) -> Generator[StringIO, None, None]:
    save_stream = getattr(sys, name)
    out = StringIO()
    setattr(sys, name, out)
    try:
        yield out
    finally:
        setattr(sys, name, save_stream)


def CaptureStdout() -> ContextManager[StringIO]:
    return CaptureStream('stdout')


def CaptureStderr() -> ContextManager[StringIO]:
    return CaptureStream('stderr')
