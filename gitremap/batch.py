# batch.py -- Batched object reads over a long-lived cat-file session
# Copyright (C) 2026 Gitremap contributors
#
# SPDX-License-Identifier: Apache-2.0 OR GPL-2.0-or-later
# Gitremap is dual-licensed under the Apache License, Version 2.0 and the GNU
# General Public License as published by the Free Software Foundation; version 2.0
# or (at your option) any later version. You can redistribute it and/or
# modify it under the terms of either of these two licenses.
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# You should have received a copy of the licenses; if not, see
# <http://www.gnu.org/licenses/> for a copy of the GNU General Public License
# and <http://www.apache.org/licenses/LICENSE-2.0> for a copy of the Apache
# License, Version 2.0.
#

"""Batched object reads over a long-lived ``git cat-file --batch`` session.

Every request is one object name terminated by a newline. Every reply is
either::

    <id> <type> <size> LF <size bytes of payload> LF

or, for names that cannot be resolved::

    <name> missing LF

Payloads are addressed by their raw byte length, so framing is done on
bytes and text is only decoded once a whole payload has been received.
"""

__all__ = [
    "BatchFrameDecoder",
    "BatchObject",
    "BatchObjectReader",
]

import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import IO, Protocol

from .errors import ProtocolFramingError, ProtocolMisuseError, StoreError

logger = logging.getLogger(__name__)

_READ_SIZE = 65536

_ABSENT_TYPES = (b"missing", b"ambiguous")


class _Process(Protocol):
    args: object
    stdin: IO[bytes] | None
    stdout: IO[bytes] | None
    stderr: IO[bytes] | None

    def wait(self) -> int: ...


@dataclass
class BatchObject:
    """One reply of the batch reader."""

    name: str
    header: str
    type: str
    oid: str | None = None
    size: int = 0
    data: bytes | None = None

    @property
    def missing(self) -> bool:
        return self.data is None

    def text(self) -> str | None:
        """Payload decoded as UTF-8, or None for absent objects."""
        if self.data is None:
            return None
        return self.data.decode("utf-8", "surrogateescape")

    @classmethod
    def from_frame(
        cls, name: str, header: bytes, payload: bytes | None
    ) -> "BatchObject":
        text = header.decode("utf-8", "surrogateescape")
        if payload is None:
            return cls(name=name, header=text, type=text.rsplit(" ", 1)[-1])
        oid, kind, size = text.rsplit(" ", 2)
        return cls(
            name=name, header=text, type=kind, oid=oid, size=int(size), data=payload
        )


class BatchFrameDecoder:
    """Incrementally split a cat-file --batch byte stream into frames.

    Bytes may arrive in arbitrary chunks, including chunks that end in the
    middle of a multi-byte character; frames are only emitted once the full
    declared length and the frame terminator have been seen.
    """

    def __init__(self) -> None:
        self._buf = bytearray()
        self._header: bytes | None = None
        self._expected = 0

    @property
    def pending(self) -> bool:
        """Whether a partial frame (or unconsumed data) is buffered."""
        return self._header is not None or bool(self._buf)

    def feed(self, data: bytes) -> list[tuple[bytes, bytes | None]]:
        """Add bytes to the buffer.

        Returns:
          List of (header, payload) tuples for every frame completed by
          this chunk; payload is None for absent objects.

        Raises:
          ProtocolFramingError: if the stream does not follow the framing
        """
        self._buf += data
        frames: list[tuple[bytes, bytes | None]] = []
        while True:
            if self._header is None:
                i = self._buf.find(b"\n")
                if i == -1:
                    break
                header = bytes(self._buf[:i])
                del self._buf[: i + 1]
                if header.rsplit(b" ", 1)[-1] in _ABSENT_TYPES:
                    frames.append((header, None))
                    continue
                self._expected = self._parse_size(header)
                self._header = header
            if len(self._buf) < self._expected + 1:
                break
            payload = bytes(self._buf[: self._expected])
            terminator = self._buf[self._expected]
            if terminator != 0x0A:
                raise ProtocolFramingError(
                    f"expected frame terminator after {self._expected} bytes "
                    f"for {self._header!r}, got {bytes([terminator])!r}"
                )
            del self._buf[: self._expected + 1]
            frames.append((self._header, payload))
            self._header = None
            self._expected = 0
        return frames

    @staticmethod
    def _parse_size(header: bytes) -> int:
        fields = header.rsplit(b" ", 2)
        if len(fields) != 3:
            raise ProtocolFramingError(f"malformed batch header {header!r}")
        try:
            size = int(fields[2])
        except ValueError as e:
            raise ProtocolFramingError(f"malformed batch header {header!r}") from e
        if size < 0:
            raise ProtocolFramingError(f"negative length in header {header!r}")
        return size


class BatchObjectReader:
    """Single persistent reader session.

    Requests are served strictly one at a time. A request made while another
    one is being answered (for example from inside a response handler) is
    queued and dispatched, in arrival order, once the current one completes.
    """

    def __init__(self, proc: _Process) -> None:
        """Initialize a BatchObjectReader.

        Args:
          proc: A started ``git cat-file --batch`` process with piped
            stdin/stdout (anything Popen-like works)
        """
        self._proc = proc
        self._decoder = BatchFrameDecoder()
        self._queue: deque[tuple[str, Callable[[BatchObject], None]]] = deque()
        self._dispatching = False
        self._ended = False
        self._closed = False

    def __enter__(self) -> "BatchObjectReader":
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        if exc_type is None:
            self.end()
        else:
            self._teardown()

    def get(self, name: str, callback: Callable[[BatchObject], None]) -> None:
        """Request an object; callback is invoked with the reply.

        Raises:
          ProtocolMisuseError: if the session has been ended
        """
        self._check_open()
        self._queue.append((name, callback))
        if not self._dispatching:
            self._drain()

    def read(self, name: str) -> BatchObject:
        """Request an object and return the reply directly.

        Raises:
          ProtocolMisuseError: if callback requests are still queued
        """
        self._check_open()
        if self._queue:
            raise ProtocolMisuseError(
                "synchronous read while queued requests are outstanding"
            )
        return self._request(name)

    def end(self, callback: Callable[[], None] | None = None) -> None:
        """Serve everything queued, then close the session."""
        self._check_open()
        self._ended = True
        if not self._dispatching:
            self._drain()
        if callback is not None:
            callback()

    def _check_open(self) -> None:
        if self._ended:
            raise ProtocolMisuseError("batch reader request after end()")

    def _drain(self) -> None:
        self._dispatching = True
        try:
            while self._queue:
                name, callback = self._queue.popleft()
                callback(self._request(name))
        finally:
            self._dispatching = False
        if self._ended and not self._closed:
            self._close()

    def _request(self, name: str) -> BatchObject:
        if "\n" in name:
            raise ValueError(f"object name contains a newline: {name!r}")
        assert self._proc.stdin is not None
        assert self._proc.stdout is not None
        self._proc.stdin.write(name.encode("utf-8") + b"\n")
        self._proc.stdin.flush()
        frames: list[tuple[bytes, bytes | None]] = []
        while not frames:
            chunk = self._proc.stdout.read1(_READ_SIZE)  # type: ignore[attr-defined]
            if not chunk:
                raise ProtocolFramingError(
                    f"batch reader stream ended while reading {name!r}"
                )
            frames = self._decoder.feed(chunk)
        if len(frames) > 1 or self._decoder.pending:
            raise ProtocolFramingError(f"out-of-turn reply after {name!r}")
        header, payload = frames[0]
        return BatchObject.from_frame(name, header, payload)

    def _close(self) -> None:
        self._closed = True
        assert self._proc.stdin is not None
        self._proc.stdin.close()
        stderr = self._proc.stderr.read() if self._proc.stderr else b""
        returncode = self._proc.wait()
        if returncode != 0:
            raise StoreError(_argv(self._proc), returncode, stderr)

    def _teardown(self) -> None:
        self._ended = True
        if self._closed:
            return
        self._closed = True
        if self._proc.stdin is not None:
            self._proc.stdin.close()
        if self._proc.stdout is not None:
            self._proc.stdout.close()
        self._proc.wait()


def _argv(proc: _Process) -> list[str]:
    args = proc.args
    if isinstance(args, (list, tuple)):
        return [str(a) for a in args]
    return [str(args)]
