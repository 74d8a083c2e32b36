"""
Sandboxed evaluation of the Kwik token script.

The page ships a packed script of the form ``eval(function(...){...}(...))``
that unpacks the download form and immediately executes it. We swap the
first ``eval`` for an assignment to ``decodedString`` so the unpacked source
is left in the interpreter's globals instead of being run, then read it back.

The script runs in js2py, a pure-Python JavaScript interpreter: no DOM, no
network, no filesystem, and ``pyimport`` disabled so JavaScript cannot reach
Python modules. Each pipeline run owns one ``DecodeContext``, which owns one
worker process holding the interpreter. A script that runs past the timeout
gets its worker killed and replaced.
"""

import asyncio
import logging
import multiprocessing
import os
from typing import Any, Optional

import js2py

logger = logging.getLogger(__name__)

DECODE_TIMEOUT_SECONDS = float(os.getenv("PAHEDL_DECODE_TIMEOUT_SECONDS", "30"))
WORKER_STARTUP_SECONDS = 60.0

EVAL_PRIMITIVE = "eval"
OUTPUT_VARIABLE = "decodedString"
READY = "ready"

js2py.disable_pyimport()

# Workers re-import this module instead of inheriting the parent's threads
_mp = multiprocessing.get_context("spawn")


def _serve(conn) -> None:
    """Worker loop: run each received script, send back (decoded, error)."""
    context = js2py.EvalJs({OUTPUT_VARIABLE: ""})
    conn.send(READY)
    while True:
        try:
            source = conn.recv()
        except EOFError:
            break
        if source is None:
            break
        try:
            context.execute(f"{OUTPUT_VARIABLE} = '';")
            context.execute(source)
            value = getattr(context, OUTPUT_VARIABLE)
            conn.send(("" if value is None else str(value), None))
        except Exception as e:
            conn.send((None, str(e)))


class DecodeContext:
    """
    An isolated JavaScript context scoped to a single pipeline run.

    Usage:
        with DecodeContext() as ctx:
            decoded = await ctx.decode(script_source)
    """

    def __init__(self, timeout: Optional[float] = None) -> None:
        self.timeout = DECODE_TIMEOUT_SECONDS if timeout is None else timeout
        self._process = None
        self._conn = None
        self._ready = False

    def __enter__(self) -> "DecodeContext":
        self.open()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def open(self) -> None:
        parent_conn, child_conn = _mp.Pipe()
        process = _mp.Process(target=_serve, args=(child_conn,), daemon=True)
        process.start()
        child_conn.close()
        self._process = process
        self._conn = parent_conn
        self._ready = False

    def close(self) -> None:
        if self._process is None:
            return
        if self._process.is_alive():
            self._process.terminate()
        self._process.join()
        self._conn.close()
        self._process = None
        self._conn = None

    @property
    def closed(self) -> bool:
        return self._process is None

    @staticmethod
    def rewrite(script: str) -> str:
        """Redirect the script's eval hand-off into the output variable."""
        return script.replace(EVAL_PRIMITIVE, f"{OUTPUT_VARIABLE}=", 1)

    async def _receive(self, timeout: float) -> Any:
        # poll() returns within the timeout, so no executor thread is left behind
        loop = asyncio.get_event_loop()
        if not await loop.run_in_executor(None, self._conn.poll, timeout):
            raise asyncio.TimeoutError
        return self._conn.recv()

    def _restart(self) -> None:
        self.close()
        self.open()

    async def decode(self, script: str) -> Optional[str]:
        """
        Execute the rewritten script and return what it deposited.

        Returns None if the script raises or runs past the timeout.
        """
        if self._process is None:
            raise RuntimeError("DecodeContext is not open")

        try:
            if not self._ready:
                await self._receive(WORKER_STARTUP_SECONDS)
                self._ready = True
            self._conn.send(self.rewrite(script))
            decoded, error = await self._receive(self.timeout)
        except asyncio.TimeoutError:
            if self._ready:
                logger.error(f"❌ Token script still running after {self.timeout:.0f}s, giving up")
            else:
                logger.error("❌ Decoder worker did not start")
            self._restart()
            return None
        except (EOFError, OSError) as e:
            logger.error(f"❌ Decoder worker died: {e!r}")
            self._restart()
            return None

        if error is not None:
            logger.error(f"❌ Token script raised during decoding: {error}")
            return None
        return decoded
