"""
Vocoder Filter Banks
====================

Author:
    Stefano Giacomelli - Ph.D. candidate @ DISIM dpt. - University of L'Aquila

License:
    GNU General Public License v3.0 or later (GPLv3+)

This module defines the :class:`FilterBank` container consumed by the vocoder
(one Butterworth band-pass filter per channel, in transfer-function form, plus
band edges and centre frequencies) and the helpers used to design one:

- Frequency-scale conversions (Greenwood cochlear map, ERB-rate, log, linear)
  used to split a frequency range into contiguous bands.
- :func:`filter_bands` / :meth:`FilterBank.from_edges` to design the
  per-channel band-pass filters with ``scipy.signal.butter``.

A filter bank can also be built from a mapping with the field names of the
MATLAB vocoder toolbox (``filterA``, ``filterB``, ``center``, ``lower``,
``upper``, ``order``) via :meth:`FilterBank.from_dict`.

References
----------
.. [1] D. D. Greenwood, "A cochlear frequency-position function for several
       species - 29 years later," *J. Acoust. Soc. Am.*, vol. 87, no. 6,
       pp. 2592-2605, 1990.

.. [2] B. R. Glasberg and B. C. J. Moore, "Derivation of auditory filter shapes
       from notched-noise data," *Hear. Res.*, vol. 47, pp. 103-138, 1990.
"""

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence, Union

import torch

from torch_vocoder.common.errors import VocoderConfigurationError
from torch_vocoder.common.filters import butter_ba, pad_coefficients

# Human cochlea constants (Greenwood 1990)
GREENWOOD_A = 165.4
GREENWOOD_ALPHA = 2.1
GREENWOOD_K = 0.88

REQUIRED_FIELDS = ('filterA', 'filterB', 'center', 'lower', 'upper', 'order')

# ------------------------------------------------- Utilities ------------------------------------------------

def greenwood2f(x: torch.Tensor) -> torch.Tensor:
    r"""
    Convert relative cochlear position to frequency (Greenwood map).

    .. math::
       f = A \left(10^{\alpha x} - k\right)

    with :math:`A = 165.4`, :math:`\alpha = 2.1`, :math:`k = 0.88` (human).

    Parameters
    ----------
    x : torch.Tensor
        Relative distance from the apex (0 to 1).

    Returns
    -------
    torch.Tensor
        Frequency in Hz.
    """
    return GREENWOOD_A * (10.0 ** (GREENWOOD_ALPHA * x) - GREENWOOD_K)


def f2greenwood(f: torch.Tensor) -> torch.Tensor:
    """Inverse of :func:`greenwood2f`: frequency in Hz to relative cochlear position."""
    return torch.log10(f / GREENWOOD_A + GREENWOOD_K) / GREENWOOD_ALPHA


def f2erbrate(f: torch.Tensor) -> torch.Tensor:
    r"""
    Convert frequency to ERB-rate (Cams).

    .. math::
       E = 21.366 \cdot \log_{10}(4.368 \cdot f_{\text{kHz}} + 1)
    """
    return 21.366 * torch.log10(4.368 * f / 1000.0 + 1.0)


def erbrate2f(erbrate: torch.Tensor) -> torch.Tensor:
    """Inverse of :func:`f2erbrate`: ERB-rate in Cams to frequency in Hz."""
    return ((10.0 ** (erbrate / 21.366)) - 1.0) / 4.368 * 1000.0


_SPACINGS = {
    'greenwood': (f2greenwood, greenwood2f),
    'erb': (f2erbrate, erbrate2f),
    'log': (torch.log, torch.exp),
    'linear': (lambda f: f, lambda s: s),
}


def band_edges(freq_range: Sequence[float],
               n_bands: int,
               spacing: str = 'greenwood') -> torch.Tensor:
    """
    Split a frequency range into contiguous bands equally spaced on a scale.

    Parameters
    ----------
    freq_range : sequence of float
        ``(low, high)`` in Hz.

    n_bands : int
        Number of bands.

    spacing : {'greenwood', 'erb', 'log', 'linear'}, optional
        Frequency scale. Default: ``'greenwood'``.

    Returns
    -------
    torch.Tensor
        Band edges in Hz, shape (n_bands + 1,), float64.
    """
    if spacing not in _SPACINGS:
        raise VocoderConfigurationError(
            f"Unknown band spacing '{spacing}'. Choose one of {sorted(_SPACINGS)}.")
    if int(n_bands) < 1:
        raise VocoderConfigurationError(f"n_bands must be >= 1, got {n_bands}")
    low, high = float(freq_range[0]), float(freq_range[1])
    if not 0.0 < low < high:
        raise VocoderConfigurationError(f"Invalid frequency range [{low}, {high}] Hz")

    forward, inverse = _SPACINGS[spacing]
    lim = forward(torch.tensor([low, high], dtype=torch.float64))
    edges = inverse(torch.linspace(float(lim[0]), float(lim[1]), int(n_bands) + 1, dtype=torch.float64))

    # Exact end points
    edges[0] = low
    edges[-1] = high
    return edges

# ------------------------------------------------- Filter Bank ----------------------------------------------

@dataclass(frozen=True, eq=False)
class FilterBank:
    """
    Per-channel band-pass filters for analysis or synthesis.

    Parameters
    ----------
    center : torch.Tensor
        Centre frequencies in Hz, shape (N,).

    lower : torch.Tensor
        Lower band edges in Hz, shape (N,).

    upper : torch.Tensor
        Upper band edges in Hz, shape (N,).

    order : torch.Tensor
        Butterworth order of each channel (int64), shape (N,).

    filter_b : torch.Tensor
        Numerator coefficients, shape (N, K), rows right-padded with zeros.

    filter_a : torch.Tensor
        Denominator coefficients, shape (N, K), rows right-padded with zeros.

    Notes
    -----
    Instances are immutable; use :meth:`from_edges`, :func:`filter_bands` or
    :meth:`from_dict` to create one.
    """

    center: torch.Tensor
    lower: torch.Tensor
    upper: torch.Tensor
    order: torch.Tensor
    filter_b: torch.Tensor
    filter_a: torch.Tensor

    def __post_init__(self):
        n = self.center.shape[0]
        for name in ('lower', 'upper', 'order'):
            if getattr(self, name).shape != (n,):
                raise VocoderConfigurationError(
                    f"Filter bank field '{name}' has shape {tuple(getattr(self, name).shape)}, expected ({n},)")
        for name in ('filter_b', 'filter_a'):
            coeffs = getattr(self, name)
            if coeffs.ndim != 2 or coeffs.shape[0] != n:
                raise VocoderConfigurationError(
                    f"Filter bank field '{name}' has shape {tuple(coeffs.shape)}, expected ({n}, K)")
        if n == 0:
            raise VocoderConfigurationError("Filter bank must contain at least one channel")

    @property
    def num_channels(self) -> int:
        return self.center.shape[0]

    @classmethod
    def from_edges(cls,
                   edges: Union[Sequence[float], torch.Tensor],
                   fs: float,
                   order: Union[int, Sequence[int]] = 3,
                   center: Optional[Sequence[float]] = None) -> 'FilterBank':
        """
        Design Butterworth band-pass filters between consecutive edges.

        Parameters
        ----------
        edges : sequence of float
            Band edges in Hz, shape (N + 1,), strictly increasing.

        fs : float
            Sampling rate in Hz.

        order : int or sequence of int, optional
            Butterworth order per channel (scalar broadcast). Default: 3.

        center : sequence of float, optional
            Centre frequencies. Default: geometric mean of each band's edges.

        Returns
        -------
        FilterBank
        """
        edges = torch.as_tensor(edges, dtype=torch.float64).reshape(-1)
        if edges.numel() < 2:
            raise VocoderConfigurationError("At least two band edges are required")
        lower, upper = edges[:-1], edges[1:]
        n = lower.shape[0]

        orders = torch.as_tensor(order, dtype=torch.int64).reshape(-1)
        if orders.numel() == 1:
            orders = orders.expand(n).clone()
        if orders.numel() != n:
            raise VocoderConfigurationError(f"order [{orders.numel()}] must be of length the number of channels [{n}]")

        if center is None:
            center = torch.sqrt(lower * upper)
        center = torch.as_tensor(center, dtype=torch.float64).reshape(-1)

        b_rows, a_rows = [], []
        for i in range(n):
            try:
                b, a = butter_ba(int(orders[i]), [float(lower[i]), float(upper[i])], fs, btype='band')
            except VocoderConfigurationError as e:
                raise VocoderConfigurationError(f"Channel {i}: {e}") from e
            b_rows.append(b)
            a_rows.append(a)

        return cls(center=center,
                   lower=lower.clone(),
                   upper=upper.clone(),
                   order=orders,
                   filter_b=pad_coefficients(b_rows),
                   filter_a=pad_coefficients(a_rows))

    @classmethod
    def from_dict(cls, fields: Mapping[str, Any]) -> 'FilterBank':
        """
        Build a filter bank from MATLAB-style fields.

        Parameters
        ----------
        fields : mapping
            Must contain ``filterA``, ``filterB`` (one coefficient row per
            channel), ``center``, ``lower``, ``upper`` and ``order``.

        Raises
        ------
        VocoderConfigurationError
            If a field is missing or the lengths are inconsistent.
        """
        missing = [k for k in REQUIRED_FIELDS if k not in fields]
        if missing:
            raise VocoderConfigurationError(f"Filter bank is missing mandatory field(s): {', '.join(missing)}")

        def _rows(value):
            if isinstance(value, torch.Tensor) and value.ndim == 2:
                return value.to(torch.float64)
            return pad_coefficients(list(value))

        return cls(center=torch.as_tensor(fields['center'], dtype=torch.float64).reshape(-1),
                   lower=torch.as_tensor(fields['lower'], dtype=torch.float64).reshape(-1),
                   upper=torch.as_tensor(fields['upper'], dtype=torch.float64).reshape(-1),
                   order=torch.as_tensor(fields['order'], dtype=torch.int64).reshape(-1),
                   filter_b=_rows(fields['filterB']),
                   filter_a=_rows(fields['filterA']))

    def validate(self, fs: float):
        """
        Check that every band lies strictly inside ``(0, fs/2)``.

        Raises
        ------
        VocoderConfigurationError
            Naming the first offending channel.
        """
        nyquist = fs / 2.0
        for i in range(self.num_channels):
            lo, hi = float(self.lower[i]), float(self.upper[i])
            if not 0.0 < lo < hi < nyquist:
                raise VocoderConfigurationError(
                    f"Channel {i}: band [{lo:.1f}, {hi:.1f}] Hz must satisfy 0 < lower < upper < "
                    f"Nyquist ({nyquist:.1f} Hz)")

    def __repr__(self) -> str:
        return (f"FilterBank(num_channels={self.num_channels}, "
                f"range=[{float(self.lower[0]):.1f}, {float(self.upper[-1]):.1f}] Hz, "
                f"K={self.filter_b.shape[-1]})")


def filter_bands(freq_range: Sequence[float],
                 n_bands: int,
                 fs: float,
                 order: Union[int, Sequence[int]] = 3,
                 spacing: str = 'greenwood') -> FilterBank:
    """
    Design a vocoder filter bank covering ``freq_range`` with ``n_bands`` channels.

    Centre frequencies sit at the midpoint of each band on the chosen scale.

    Parameters
    ----------
    freq_range : sequence of float
        ``(low, high)`` in Hz.

    n_bands : int
        Number of channels.

    fs : float
        Sampling rate in Hz.

    order : int or sequence of int, optional
        Butterworth order per channel. Default: 3.

    spacing : {'greenwood', 'erb', 'log', 'linear'}, optional
        Band spacing. Default: ``'greenwood'``.

    Returns
    -------
    FilterBank

    Examples
    --------
    >>> from torch_vocoder.common.filterbanks import filter_bands
    >>> fb = filter_bands((150, 7000), 8, fs=22050, order=3)
    >>> fb.num_channels
    8
    """
    edges = band_edges(freq_range, n_bands, spacing)
    forward, inverse = _SPACINGS[spacing]
    scaled = forward(edges)
    center = inverse((scaled[:-1] + scaled[1:]) / 2)
    return FilterBank.from_edges(edges, fs, order=order, center=center)
