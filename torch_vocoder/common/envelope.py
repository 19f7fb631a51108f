"""
Channel Envelope Extraction
===========================

Author:
    Stefano Giacomelli - Ph.D. candidate @ DISIM dpt. - University of L'Aquila

License:
    GNU General Public License v3.0 or later (GPLv3+)

This module implements the envelope stage of the channel vocoder. Two methods
are provided:

1. **Low-pass**: half-wave or full-wave rectification followed by a zero-phase
   Butterworth low-pass filter designed per channel (cutoff and order may
   differ across channels), with residual negative ringing clamped to zero.

2. **Hilbert**: magnitude of the analytic signal.

In both cases the envelope of each channel is divided by its own peak so its
maximum equals 1.
"""

import logging
from typing import Optional, Sequence

import torch
import torch.nn as nn

from torch_vocoder.common.config import EnvelopeMethod, Rectification
from torch_vocoder.common.errors import VocoderComputationError, VocoderConfigurationError
from torch_vocoder.common.filters import butter_ba, pad_coefficients, torch_filtfilt, torch_hilbert

logger = logging.getLogger(__name__)


class EnvelopeExtractor(nn.Module):
    r"""
    Per-channel envelope extraction with peak normalisation.

    Algorithm Overview
    ------------------
    **Low-pass method**

    1. Rectification:

       .. math::
           x_{\text{rect}}(t) = \max(x(t), 0) \quad \text{(half-wave)}, \qquad
           x_{\text{rect}}(t) = |x(t)| \quad \text{(full-wave)}

    2. Zero-phase Butterworth low-pass at :math:`f_{c,i}`, order :math:`n_i`
       (effective order :math:`2 n_i` after the forward-backward pass), then
       :math:`e(t) = \max(e(t), 0)`.

    **Hilbert method**

    .. math::
        e(t) = |x(t) + j\,\mathcal{H}\{x\}(t)|

    **Normalisation**

    .. math::
        \hat{e}_i(t) = e_i(t) / \max_t e_i(t)

    Parameters
    ----------
    fs : float
        Sampling rate in Hz.

    num_channels : int
        Number of channels :math:`N`.

    method : str or EnvelopeMethod, optional
        ``'low-pass'`` (aliases ``'lp'``, ``'low'``) or ``'hilbert'``.
        Default: ``'low-pass'``.

    rectify : str or Rectification, optional
        ``'half-wave'`` (alias ``'half'``) or ``'full-wave'`` (alias ``'full'``).
        Default: ``'half-wave'``.

    fc : sequence of float, optional
        Low-pass cutoff per channel in Hz. Required for the low-pass method.

    order : sequence of int, optional
        Low-pass order per channel. Required for the low-pass method.

    dtype : torch.dtype, optional
        Coefficient data type. Default: torch.float64.

    Attributes
    ----------
    b : torch.Tensor
        Low-pass numerator coefficients, shape (N, K) (low-pass method only).

    a : torch.Tensor
        Low-pass denominator coefficients, shape (N, K) (low-pass method only).

    Shape
    -----
    - Input: :math:`(..., N, T)` band-passed channel signals
    - Output: Same shape as input

    Examples
    --------
    >>> import torch
    >>> from torch_vocoder.common.envelope import EnvelopeExtractor
    >>> env = EnvelopeExtractor(fs=16000, num_channels=4, fc=[250.0] * 4, order=[2] * 4)
    >>> x = torch.randn(4, 16000, dtype=torch.float64)
    >>> e = env(x)
    >>> e.amax(dim=-1)
    tensor([1., 1., 1., 1.], dtype=torch.float64)
    """

    def __init__(self,
                 fs: float,
                 num_channels: int,
                 method: str = 'low-pass',
                 rectify: str = 'half-wave',
                 fc: Optional[Sequence[float]] = None,
                 order: Optional[Sequence[int]] = None,
                 dtype: torch.dtype = torch.float64):
        super().__init__()

        self.fs = fs
        self.num_channels = num_channels
        self.method = EnvelopeMethod.parse(method)
        self.rectify = Rectification.parse(rectify)

        if self.method is EnvelopeMethod.LOW_PASS:
            if fc is None or order is None:
                raise VocoderConfigurationError("The low-pass envelope requires per-channel 'fc' and 'order'")
            if len(fc) != num_channels or len(order) != num_channels:
                raise VocoderConfigurationError(
                    f"Envelope fc [{len(fc)}] and order [{len(order)}] must be of length the number "
                    f"of channels [{num_channels}]")
            self.fc = tuple(float(f) for f in fc)
            self.order = tuple(int(o) for o in order)

            # Designed once, reused for every call
            b_rows, a_rows = [], []
            for i in range(num_channels):
                try:
                    b, a = butter_ba(self.order[i], self.fc[i], fs, btype='low', dtype=dtype)
                except VocoderConfigurationError as e:
                    raise VocoderConfigurationError(f"Channel {i}: envelope filter: {e}") from e
                b_rows.append(b)
                a_rows.append(a)
            self.register_buffer('b', pad_coefficients(b_rows, dtype=dtype))
            self.register_buffer('a', pad_coefficients(a_rows, dtype=dtype))
            logger.debug("Designed %d envelope low-pass filters (fc=%s Hz, order=%s)",
                         num_channels, list(self.fc), list(self.order))
        else:
            self.fc = ()
            self.order = ()
            self.register_buffer('b', None)
            self.register_buffer('a', None)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        """
        Extract peak-normalised envelopes.

        Parameters
        ----------
        x : torch.Tensor
            Band-passed signals, shape (..., N, T).

        Returns
        -------
        torch.Tensor
            Envelopes with per-channel maximum 1, same shape as input.

        Raises
        ------
        VocoderComputationError
            If a channel envelope is identically zero.
        """
        if self.method is EnvelopeMethod.HILBERT:
            env = torch.abs(torch_hilbert(x))
        else:
            if self.rectify is Rectification.HALF_WAVE:
                env = torch.clamp(x, min=0.0)
            else:
                env = torch.abs(x)
            env = torch.clamp(torch_filtfilt(self.b, self.a, env), min=0.0)

        return normalize_peak(env)

    def extra_repr(self) -> str:
        if self.method is EnvelopeMethod.HILBERT:
            return f"fs={self.fs}, num_channels={self.num_channels}, method={self.method.value}"
        return (f"fs={self.fs}, num_channels={self.num_channels}, method={self.method.value}, "
                f"rectify={self.rectify.value}, fc={list(self.fc)}, order={list(self.order)}")


def normalize_peak(env: torch.Tensor) -> torch.Tensor:
    """
    Divide each channel envelope by its maximum over time.

    Parameters
    ----------
    env : torch.Tensor
        Envelopes, shape (..., N, T).

    Raises
    ------
    VocoderComputationError
        For the first channel whose peak is zero or non-finite.
    """
    peak = env.amax(dim=-1, keepdim=True)
    bad = ~torch.isfinite(peak) | (peak == 0)
    bad = bad.reshape(-1, env.shape[-2]).any(dim=0) if env.ndim >= 2 else bad.reshape(1)
    if bool(bad.any()):
        channel = int(torch.nonzero(bad)[0])
        raise VocoderComputationError("envelope peak is zero or non-finite, cannot normalise (silent band?)",
                                      channel=channel, stage='envelope')
    return env / peak
