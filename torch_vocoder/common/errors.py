"""
Vocoder Exceptions and Warnings
===============================

Author:
    Stefano Giacomelli - Ph.D. candidate @ DISIM dpt. - University of L'Aquila

License:
    GNU General Public License v3.0 or later (GPLv3+)

Two fatal families are distinguished:

- :class:`VocoderConfigurationError` is raised while resolving parameters or
  building modules, before any signal is filtered.
- :class:`VocoderComputationError` is raised inside ``forward`` when a
  data-dependent division would produce NaNs (zero envelope peak, zero-RMS
  channel or output). It records the offending channel index.

:class:`SynthesisFiltersWarning` is advisory only.
"""

from typing import Optional


class VocoderError(Exception):
    """Base class for all vocoder errors."""


class VocoderConfigurationError(VocoderError, ValueError):
    """Invalid, missing or inconsistent vocoder parameters."""


class VocoderComputationError(VocoderError, ArithmeticError):
    """
    Degenerate intermediate signal that cannot be normalised.

    Parameters
    ----------
    message : str
        Description of the violated precondition.

    channel : int, optional
        0-based channel index, ``None`` for signal-level failures.

    stage : str, optional
        Pipeline stage that failed (``'envelope'``, ``'level'``, ``'recombine'``).
    """

    def __init__(self, message: str, channel: Optional[int] = None, stage: Optional[str] = None):
        if channel is not None:
            message = f"Channel {channel}: {message}"
        super().__init__(message)
        self.channel = channel
        self.stage = stage


class SynthesisFiltersWarning(UserWarning):
    """Synthesis filters were not provided and the analysis filters are reused."""
