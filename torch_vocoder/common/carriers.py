"""
Vocoder Carriers
================

Author:
    Stefano Giacomelli - Ph.D. candidate @ DISIM dpt. - University of L'Aquila

License:
    GNU General Public License v3.0 or later (GPLv3+)

Carrier signals that replace the fine structure of each vocoder channel:

- **noise**: bipolar random sign sequence, optionally band-pass filtered with
  the synthesis filter before modulation.
- **sine**: pure tone at the synthesis centre frequency.
- **low-noise**: band-limited noise with a flattened temporal envelope
  (Hilbert-envelope division iterated with band-limiting).
- **pshc**: pulse-spreading harmonic complex, harmonics of ``f0`` inside the
  band with phases that interleave several f0-rate pulse trains.

Every stochastic generator draws from its own ``torch.Generator`` seeded with
the value passed in, so channels never share an advancing random stream.

References
----------
.. [1] A. Kohlrausch, R. Fassel, M. van der Heijden, R. Kortekaas, S. van de Par,
       A. J. Oxenham, and D. Püschel, "Detection of tones in low-noise noise:
       Further evidence for the role of envelope fluctuations," *Acustica*,
       vol. 83, pp. 659-669, 1997.

.. [2] F. Hilkhuysen and O. Macherey, "Optimizing pulse-spreading harmonic
       complexes to minimize intrinsic modulations after auditory filtering,"
       *J. Acoust. Soc. Am.*, vol. 136, no. 3, pp. 1281-1294, 2014.
"""

import math
from typing import Optional

import torch
import torch.nn as nn

from torch_vocoder.common.config import Carrier
from torch_vocoder.common.errors import VocoderConfigurationError
from torch_vocoder.common.filterbanks import FilterBank
from torch_vocoder.common.filters import torch_filtfilt, torch_hilbert, torch_rms

# ------------------------------------------------- Generators -----------------------------------------------

def _generator(seed: int, device: Optional[torch.device]) -> torch.Generator:
    gen = torch.Generator(device=device if device is not None else 'cpu')
    gen.manual_seed(int(seed))
    return gen


def noise_carrier(n_samples: int,
                  num_channels: int,
                  seed: int,
                  device: Optional[torch.device] = None,
                  dtype: torch.dtype = torch.float64) -> torch.Tensor:
    """
    Bipolar noise, one independently seeded generator per channel.

    Every channel is seeded with the same ``seed`` and therefore receives the
    same sequence.

    Parameters
    ----------
    n_samples : int
        Length :math:`T`.

    num_channels : int
        Number of channels :math:`N`.

    seed : int
        Seed applied to each channel's generator.

    Returns
    -------
    torch.Tensor
        Values in ``{-1, +1}``, shape (N, T).
    """
    rows = []
    for _ in range(num_channels):
        gen = _generator(seed, device)
        u = torch.rand(n_samples, generator=gen, device=device, dtype=dtype)
        rows.append(torch.sign(u - 0.5))
    return torch.stack(rows)


def sine_carrier(n_samples: int,
                 fs: float,
                 center: torch.Tensor) -> torch.Tensor:
    r"""
    Pure tones at the channel centre frequencies, zero starting phase.

    .. math::
        c_i[n] = \sin(2 \pi f_{c,i} n / f_s)

    Parameters
    ----------
    n_samples : int
        Length :math:`T`.

    fs : float
        Sampling rate in Hz.

    center : torch.Tensor
        Centre frequencies in Hz, shape (N,).

    Returns
    -------
    torch.Tensor
        Shape (N, T), same device and dtype as ``center``.
    """
    n = torch.arange(n_samples, device=center.device, dtype=center.dtype)
    return torch.sin(2.0 * math.pi * center.unsqueeze(-1) * n / fs)


def lownoise_noise(n_samples: int,
                   fs: float,
                   lower: float,
                   upper: float,
                   seed: int,
                   n_iter: int = 10,
                   device: Optional[torch.device] = None,
                   dtype: torch.dtype = torch.float64) -> torch.Tensor:
    """
    Low-noise noise: band-limited noise with a flattened envelope.

    Starts from seeded Gaussian noise restricted to ``[lower, upper]`` in the
    frequency domain, then ``n_iter`` times divides by its Hilbert envelope and
    band-limits again.

    Parameters
    ----------
    n_samples : int
        Length :math:`T`.

    fs : float
        Sampling rate in Hz.

    lower, upper : float
        Band edges in Hz.

    seed : int
        Random seed.

    n_iter : int, optional
        Number of envelope-flattening iterations. Default: 10.

    Returns
    -------
    torch.Tensor
        Unit-RMS carrier, shape (T,).

    Raises
    ------
    VocoderConfigurationError
        If no FFT bin falls inside the band.
    """
    gen = _generator(seed, device)
    x = torch.randn(n_samples, generator=gen, device=device, dtype=dtype)

    freqs = torch.fft.rfftfreq(n_samples, d=1.0 / fs, device=device, dtype=dtype)
    mask = ((freqs >= lower) & (freqs <= upper)).to(dtype)
    if not bool(mask.any()):
        raise VocoderConfigurationError(
            f"Band [{lower:.1f}, {upper:.1f}] Hz contains no frequency bin for {n_samples} samples at {fs} Hz")

    x = torch.fft.irfft(torch.fft.rfft(x) * mask, n=n_samples)
    floor = torch.finfo(dtype).eps
    for _ in range(n_iter):
        env = torch.abs(torch_hilbert(x))
        x = x / env.clamp_min(floor)
        x = torch.fft.irfft(torch.fft.rfft(x) * mask, n=n_samples)

    return x / torch_rms(x)


def pshc(n_samples: int,
         fs: float,
         lower: float,
         upper: float,
         f0: float,
         seed: int,
         spread: Optional[int] = None,
         device: Optional[torch.device] = None,
         dtype: torch.dtype = torch.float64) -> torch.Tensor:
    r"""
    Pulse-spreading harmonic complex.

    The complex contains every harmonic :math:`h f_0` inside ``[lower, upper]``
    with unit amplitude. Its phases are those of ``spread`` interleaved
    f0-rate pulse trains, delayed by :math:`k / (\text{spread} \cdot f_0)`,
    with seeded random polarities :math:`s_k`:

    .. math::
        \phi_h = \arg \sum_{k=0}^{S-1} s_k\, e^{-j 2 \pi h k / S}

    Parameters
    ----------
    n_samples : int
        Length :math:`T`.

    fs : float
        Sampling rate in Hz.

    lower, upper : float
        Band edges in Hz.

    f0 : float
        Fundamental frequency in Hz.

    seed : int
        Random seed for the pulse polarities.

    spread : int, optional
        Number of interleaved pulse trains. Default:
        ``max(1, floor(sqrt(n_harmonics)))``.

    Returns
    -------
    torch.Tensor
        Unit-RMS carrier, shape (T,).

    Raises
    ------
    VocoderConfigurationError
        If ``f0`` is not positive or no harmonic falls inside the band.
    """
    if f0 is None or f0 <= 0:
        raise VocoderConfigurationError(f"PSHC requires a positive f0, got {f0}")
    h_lo = max(1, math.ceil(lower / f0))
    h_hi = math.floor(upper / f0)
    if h_hi < h_lo:
        raise VocoderConfigurationError(
            f"No harmonic of f0={f0:.1f} Hz falls inside [{lower:.1f}, {upper:.1f}] Hz")

    harmonics = torch.arange(h_lo, h_hi + 1, device=device, dtype=dtype)
    n_harm = harmonics.shape[0]
    if spread is None:
        spread = max(1, int(math.floor(math.sqrt(n_harm))))

    gen = _generator(seed, device)
    polarity = torch.where(torch.rand(spread, generator=gen, device=device, dtype=dtype) < 0.5, -1.0, 1.0)
    k = torch.arange(spread, device=device, dtype=dtype)

    arg = -2.0 * math.pi * harmonics.unsqueeze(-1) * k / spread  # [H, S]
    spectrum = (torch.polar(torch.ones_like(arg), arg) * polarity).sum(dim=-1)
    phase = torch.angle(spectrum)

    t = torch.arange(n_samples, device=device, dtype=dtype) / fs
    x = torch.zeros(n_samples, device=device, dtype=dtype)
    # Chunked over harmonics to bound memory at low f0
    for start in range(0, n_harm, 64):
        h = harmonics[start:start + 64].unsqueeze(-1)
        ph = phase[start:start + 64].unsqueeze(-1)
        x = x + torch.cos(2.0 * math.pi * f0 * h * t + ph).sum(dim=0)

    return x / torch_rms(x)

# --------------------------------------------------- Module -------------------------------------------------

class CarrierGenerator(nn.Module):
    """
    Generate one carrier per channel from the synthesis filter bank.

    Parameters
    ----------
    fs : float
        Sampling rate in Hz.

    synthesis_filters : FilterBank
        Synthesis filters (centre frequencies, band edges, coefficients).

    carrier : str or Carrier, optional
        ``'noise'``, ``'sine'``, ``'low-noise'`` or ``'pshc'``. Default: ``'noise'``.

    filter_before : bool, optional
        Band-pass filter the noise carrier with the synthesis filter before
        modulation (noise only). Default: ``False``.

    f0 : float, optional
        Fundamental frequency for ``'pshc'`` (required for that carrier).

    random_seed : int, optional
        Seed shared by all channels. Default: 0.

    dtype : torch.dtype, optional
        Data type. Default: torch.float64.

    Shape
    -----
    - Output: :math:`(N, T)`
    """

    def __init__(self,
                 fs: float,
                 synthesis_filters: FilterBank,
                 carrier: str = 'noise',
                 filter_before: bool = False,
                 f0: Optional[float] = None,
                 random_seed: int = 0,
                 dtype: torch.dtype = torch.float64):
        super().__init__()

        self.fs = fs
        self.carrier = Carrier.parse(carrier)
        self.filter_before = filter_before
        self.f0 = f0
        self.random_seed = int(random_seed)
        self.num_channels = synthesis_filters.num_channels

        if self.carrier is Carrier.PSHC and (f0 is None or f0 <= 0):
            raise VocoderConfigurationError("The 'pshc' carrier requires a positive f0")

        self.register_buffer('center', synthesis_filters.center.to(dtype))
        self.register_buffer('lower', synthesis_filters.lower.to(dtype))
        self.register_buffer('upper', synthesis_filters.upper.to(dtype))
        self.register_buffer('b', synthesis_filters.filter_b.to(dtype))
        self.register_buffer('a', synthesis_filters.filter_a.to(dtype))

    def forward(self, n_samples: int) -> torch.Tensor:
        """
        Generate carriers.

        Parameters
        ----------
        n_samples : int
            Length :math:`T`.

        Returns
        -------
        torch.Tensor
            Carriers, shape (N, T), on the device of the module buffers.
        """
        device = self.center.device
        dtype = self.center.dtype

        if self.carrier is Carrier.NOISE:
            c = noise_carrier(n_samples, self.num_channels, self.random_seed, device=device, dtype=dtype)
            if self.filter_before:
                c = torch_filtfilt(self.b, self.a, c)
            return c

        if self.carrier is Carrier.SINE:
            return sine_carrier(n_samples, self.fs, self.center)

        rows = []
        for i in range(self.num_channels):
            lo, hi = float(self.lower[i]), float(self.upper[i])
            if self.carrier is Carrier.LOW_NOISE:
                rows.append(lownoise_noise(n_samples, self.fs, lo, hi, self.random_seed,
                                           device=device, dtype=dtype))
            else:
                rows.append(pshc(n_samples, self.fs, lo, hi, self.f0, self.random_seed,
                                 device=device, dtype=dtype))
        return torch.stack(rows)

    def extra_repr(self) -> str:
        return (f"fs={self.fs}, num_channels={self.num_channels}, carrier={self.carrier.value}, "
                f"filter_before={self.filter_before}, f0={self.f0}, random_seed={self.random_seed}")
