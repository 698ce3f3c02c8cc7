"""Test doubles and helpers shared across the test modules."""

import asyncio
import threading

from transfer.storage import Destination


class StaticDirectory:
    """Device directory returning a fixed list."""

    def __init__(self, endpoints=()):
        self.endpoints = tuple(endpoints)

    def list_paired_endpoints(self):
        return self.endpoints


class ScriptedConnection:
    """Connection double whose reads follow a script of bytes or exceptions."""

    def __init__(self, script=(), fail_writes_with=None):
        self._script = list(script)
        self._fail_writes_with = fail_writes_with
        self.peer_address = "scripted"
        self.written = bytearray()
        self.reads = 0
        self.close_calls = 0

    @property
    def closed(self):
        return self.close_calls > 0

    def read(self, size):
        self.reads += 1
        if not self._script:
            return b""
        item = self._script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    def write(self, data):
        if self._fail_writes_with is not None:
            raise self._fail_writes_with
        self.written += bytes(data)

    def flush(self):
        pass

    def close(self):
        self.close_calls += 1


class MemoryDestination(Destination):
    """Destination that keeps its bytes after close()."""

    def __init__(self, location="memory://received"):
        super().__init__(stream=None, location=location)
        self.buffer = bytearray()
        self.closed = False

    def write(self, data):
        self.buffer += data

    def close(self):
        self.closed = True


def run_in_thread(fn, *args, **kwargs):
    """Start ``fn`` on a daemon thread; returns a callable that joins and yields its result."""
    result = {}

    def target():
        try:
            result["value"] = fn(*args, **kwargs)
        except BaseException as e:  # re-raised in the test thread by join()
            result["error"] = e

    thread = threading.Thread(target=target, daemon=True)
    thread.start()

    def join(timeout=60):
        thread.join(timeout)
        assert not thread.is_alive(), f"{fn.__name__} did not finish"
        if "error" in result:
            raise result["error"]
        return result["value"]

    return join


async def wait_for(predicate, timeout=5.0):
    """Poll ``predicate`` from the event loop until it is truthy."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met in time")
        await asyncio.sleep(0.01)
