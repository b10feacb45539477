"""Buffered text log of simulation results.

Rows are accumulated in memory while the simulation runs and written to
the output stream in one go when the run completes. The layout is a
delimited table:

.. code-block:: text

    time        ,theta       ,Dtheta
               0,           0,           0
             0.1,       0.005,         0.1
"""

import io
import sys
from typing import Iterable, Optional, Sequence, TextIO

from odesim.config import LogConfig
from odesim.state import State


def fix_length(s: str, length: int) -> str:
    """Pad ``s`` with spaces or truncate it to exactly ``length``."""
    return s[:length].ljust(length)


class ResultsLogger:
    """Accumulates result rows and writes them on ``flush``.

    Parameters
    ----------
    config : LogConfig
        Column width, precision and separator
    output : file-like, optional
        Stream written on flush, by default ``sys.stdout``
    """

    def __init__(self, config: LogConfig, output: Optional[TextIO] = None):
        self.config = config
        self.output = output if output is not None else sys.stdout
        self._buffer = io.StringIO()
        if config.precision == -1:
            self._fmt = f"%{config.format_len}g"
        else:
            self._fmt = f"%{config.format_len}.{config.precision}g"

    def log_header(
        self, domain: str, x_symbols: Sequence[str], u_symbols: Sequence[str]
    ):
        names = [domain, *x_symbols, *u_symbols]
        self._write_row(fix_length(name, self.config.format_len) for name in names)

    def log_states(self, states: Iterable[State]):
        for s in states:
            values = [s.time, *s.x_vector(), *s.u_vector()]
            self._write_row(self._fmt % v for v in values)

    def _write_row(self, fields: Iterable[str]):
        self._buffer.write(self.config.separator.join(fields))
        self._buffer.write("\n")

    def getvalue(self) -> str:
        """Buffered text not yet flushed."""
        return self._buffer.getvalue()

    def flush(self):
        self.output.write(self._buffer.getvalue())
        self.output.flush()
        self._buffer = io.StringIO()
