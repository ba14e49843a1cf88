# objects.py -- Commit records and object id helpers
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

"""Commit records and object id helpers."""

__all__ = [
    "EMPTY_TREE",
    "CommitRecord",
    "Identity",
    "format_timezone",
    "parse_commit",
    "parse_timezone",
    "quote_path",
    "unquote_path",
    "valid_hexsha",
]

import binascii
from dataclasses import dataclass, field

# Id of the empty tree in a sha1 repository.
EMPTY_TREE = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"

_TREE_HEADER = b"tree"
_PARENT_HEADER = b"parent"
_AUTHOR_HEADER = b"author"
_COMMITTER_HEADER = b"committer"


def valid_hexsha(hex: str | bytes) -> bool:
    """Check whether a string is a full hex object id."""
    if len(hex) != 40:
        return False
    try:
        binascii.unhexlify(hex)
    except (TypeError, binascii.Error):
        return False
    else:
        return True


def parse_timezone(text: str | bytes) -> int:
    """Parse a git timezone offset such as "+0200" into seconds."""
    if isinstance(text, bytes):
        text = text.decode("ascii")
    if not text or text[0] not in "+-":
        raise ValueError(f"Timezone must start with + or - ({text})")
    sign = text[0]
    offset = int(text[1:])
    signum = -1 if sign == "-" else 1
    hours = offset // 100
    minutes = offset % 100
    return signum * (hours * 3600 + minutes * 60)


def format_timezone(offset: int, negative_utc: bool = False) -> str:
    """Format a timezone offset in seconds for git."""
    if offset % 60 != 0:
        raise ValueError("Unable to handle non-minute offset.")
    if offset < 0 or (offset == 0 and negative_utc):
        sign = "-"
        offset = -offset
    else:
        sign = "+"
    return f"{sign}{offset // 3600:02d}{(offset // 60) % 60:02d}"


@dataclass(frozen=True)
class Identity:
    """Author or committer metadata of a commit."""

    name: str
    email: str
    time: int
    timezone: int
    negative_utc: bool = False

    @classmethod
    def parse(cls, value: str | bytes) -> "Identity":
        """Parse "Name <email> 1234567890 +0000"."""
        if isinstance(value, bytes):
            value = value.decode("utf-8", "surrogateescape")
        who, timetext, tztext = value.rsplit(" ", 2)
        name, _, email = who.partition("<")
        return cls(
            name=name.rstrip(" "),
            email=email.rstrip(">"),
            time=int(timetext),
            timezone=parse_timezone(tztext),
            negative_utc=tztext == "-0000",
        )

    @property
    def date(self) -> str:
        """Date in git's raw format, usable as GIT_AUTHOR_DATE."""
        return f"{self.time} {format_timezone(self.timezone, self.negative_utc)}"

    def __str__(self) -> str:
        return f"{self.name} <{self.email}> {self.date}"


@dataclass
class CommitRecord:
    """A commit as read from the store. Treated as immutable once read."""

    id: str
    tree: str | None = None
    parents: list[str] = field(default_factory=list)
    author: Identity | None = None
    committer: Identity | None = None
    message: str = ""
    boundary: bool = False


def parse_commit(oid: str, raw: bytes) -> CommitRecord:
    """Parse a raw commit object as printed by cat-file.

    Multi-line headers such as gpgsig are skipped.
    """
    record = CommitRecord(id=oid)
    lines = iter(raw.split(b"\n"))
    for line in lines:
        if line == b"":
            break
        if line.startswith(b" "):
            # Continuation of a multi-line header
            continue
        field_name, _, value = line.partition(b" ")
        if field_name == _TREE_HEADER:
            record.tree = value.decode("ascii")
        elif field_name == _PARENT_HEADER:
            record.parents.append(value.decode("ascii"))
        elif field_name == _AUTHOR_HEADER:
            record.author = Identity.parse(value)
        elif field_name == _COMMITTER_HEADER:
            record.committer = Identity.parse(value)
    record.message = b"\n".join(lines).decode("utf-8", "surrogateescape")
    return record


_QUOTE_ESCAPES = {
    "\\": "\\\\",
    '"': '\\"',
    "\n": "\\n",
    "\t": "\\t",
}

_UNQUOTE_ESCAPES = {
    "a": "\a",
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "v": "\v",
    '"': '"',
    "\\": "\\",
}


def quote_path(path: str) -> str:
    """Quote a path C-style, as fast-import accepts it."""
    return '"' + "".join(_QUOTE_ESCAPES.get(c, c) for c in path) + '"'


def unquote_path(path: str) -> str:
    """Undo git's C-style path quoting; unquoted paths are returned as is."""
    if len(path) < 2 or path[0] != '"' or path[-1] != '"':
        return path
    body = path[1:-1]
    out = bytearray()
    i = 0
    while i < len(body):
        c = body[i]
        if c != "\\":
            out += c.encode("utf-8")
            i += 1
            continue
        nxt = body[i + 1 : i + 2]
        if nxt in _UNQUOTE_ESCAPES:
            out += _UNQUOTE_ESCAPES[nxt].encode("ascii")
            i += 2
        elif nxt.isdigit():
            out.append(int(body[i + 1 : i + 4], 8))
            i += 4
        else:
            out += b"\\"
            i += 1
    return out.decode("utf-8", "surrogateescape")
