# log_utils.py -- Logging utilities for gitremap
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

"""Logging utilities for gitremap.

Gitremap is usable as a library, so the package logger carries a no-op
handler until an application opts into output via default_logging_config().

Trace output is controlled by the GITREMAP_TRACE environment variable, or
GIT_TRACE when the former is unset:

- "1", "2" or "true" trace to stderr
- an integer 3-9 traces to that file descriptor
- an absolute path traces to that file (one file per process if it is a
  directory)
"""

import logging
import os
import sys

getLogger = logging.getLogger

TRACE_FORMAT = "%(asctime)s %(name)s %(levelname)s: %(message)s"


class _NullHandler(logging.Handler):
    """No-op logging handler to avoid unexpected logging warnings."""

    def emit(self, record: logging.LogRecord) -> None:
        pass


_NULL_HANDLER = _NullHandler()
_GITREMAP_LOGGER = getLogger("gitremap")
_GITREMAP_LOGGER.addHandler(_NULL_HANDLER)


def _trace_value() -> str:
    value = os.environ.get("GITREMAP_TRACE")
    if value is None:
        value = os.environ.get("GIT_TRACE", "")
    return value


def _get_trace_target() -> str | int | None:
    """Get the trace target from the environment.

    Returns:
        - None if tracing is disabled
        - 2 for stderr output
        - int (3-9) for a file descriptor
        - str for a file path
    """
    trace_value = _trace_value()
    if not trace_value or trace_value.lower() in ("0", "false"):
        return None
    if trace_value.lower() in ("1", "2", "true"):
        return 2
    try:
        fd = int(trace_value)
    except ValueError:
        pass
    else:
        if 3 <= fd <= 9:
            return fd
    if os.path.isabs(trace_value):
        return trace_value
    return None


def _configure_logging_from_trace() -> bool:
    """Configure logging from the trace environment variables.

    Returns True if trace configuration was successful, False otherwise.
    """
    trace_target = _get_trace_target()
    if trace_target is None:
        return False

    if trace_target == 2:
        logging.basicConfig(level=logging.DEBUG, stream=sys.stderr, format=TRACE_FORMAT)
        return True

    if isinstance(trace_target, int):
        try:
            stream = os.fdopen(trace_target, "w", buffering=1)
        except OSError as e:
            sys.stderr.write(f"Warning: Failed to open trace fd {trace_target}: {e}\n")
            return False
        logging.basicConfig(level=logging.DEBUG, stream=stream, format=TRACE_FORMAT)
        return True

    if os.path.isdir(trace_target):
        filename = os.path.join(trace_target, f"trace.{os.getpid()}")
    else:
        filename = trace_target
    try:
        logging.basicConfig(
            level=logging.DEBUG, filename=filename, filemode="a", format=TRACE_FORMAT
        )
    except OSError as e:
        sys.stderr.write(f"Warning: Failed to open trace file {trace_target}: {e}\n")
        return False
    return True


def trace_level() -> int:
    """Return the store trace level implied by the environment (0, 1 or 2)."""
    value = _trace_value()
    if value == "2":
        return 2
    return 1 if _get_trace_target() is not None else 0


def default_logging_config() -> None:
    """Set up the default gitremap loggers."""
    remove_null_handler()
    if not _configure_logging_from_trace():
        logging.basicConfig(
            level=logging.INFO,
            stream=sys.stderr,
            format="%(message)s",
        )


def remove_null_handler() -> None:
    """Remove the null handler from the gitremap logger."""
    _GITREMAP_LOGGER.removeHandler(_NULL_HANDLER)
