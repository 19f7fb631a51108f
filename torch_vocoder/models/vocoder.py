"""
Channel Vocoder
===============

Author:
    Stefano Giacomelli - Ph.D. candidate @ DISIM dpt. - University of L'Aquila

License:
    GNU General Public License v3.0 or later (GPLv3+)

This module implements a channel vocoder of the kind used to simulate
cochlear-implant processing in hearing research. The input is decomposed into
frequency bands, the envelope of each band modulates a substitute carrier
(noise, tone, low-noise noise or pulse-spreading harmonic complex), and the
bands are summed back into a single waveform.

Loudness is preserved at two levels:

- each channel is rescaled to the RMS of its own analysis band;
- the sum is rescaled to the RMS of the input restricted to the overall
  analysis passband.

The output is **not** scaled to avoid clipping; this is left to the caller.

References
----------
.. [1] R. V. Shannon, F.-G. Zeng, V. Kamath, J. Wygonski, and M. Ekelid,
       "Speech recognition with primarily temporal cues," *Science*, vol. 270,
       no. 5234, pp. 303-304, 1995.

.. [2] E. Gaudrain and D. Başkent, "Factors limiting vocal-tract length
       discrimination in cochlear implant simulations," *J. Acoust. Soc. Am.*,
       vol. 137, no. 3, pp. 1298-1308, 2015.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple, Union

import numpy as np
import torch
import torch.nn as nn

from torch_vocoder.common.carriers import CarrierGenerator
from torch_vocoder.common.config import VocoderConfig, resolve_parameters
from torch_vocoder.common.envelope import EnvelopeExtractor
from torch_vocoder.common.errors import VocoderComputationError, VocoderConfigurationError
from torch_vocoder.common.filterbanks import FilterBank
from torch_vocoder.common.filters import ButterworthFilter, torch_filtfilt, torch_rms

logger = logging.getLogger(__name__)


@dataclass
class ChannelResults:
    """
    Intermediate per-channel signals of one vocoder pass.

    Attributes
    ----------
    bands : torch.Tensor
        Analysis-filtered signals, shape (..., N, T).

    levels : torch.Tensor
        RMS of each band (target level of each channel), shape (..., N).

    envelopes : torch.Tensor
        Peak-normalised envelopes, shape (..., N, T).

    carriers : torch.Tensor
        Raw carriers (after ``filter_before``), shape (N, T).

    channels : torch.Tensor
        Modulated, post-filtered, level-restored channels, shape (..., N, T).

    reference_level : torch.Tensor
        RMS of the input restricted to the analysis passband, shape (...).
    """

    bands: torch.Tensor
    levels: torch.Tensor
    envelopes: torch.Tensor
    carriers: torch.Tensor
    channels: torch.Tensor
    reference_level: torch.Tensor


class Vocoder(nn.Module):
    r"""
    Channel vocoder with level-preserving re-synthesis.

    Algorithm Overview
    ------------------
    **Stage 0: Reference level**

    The input is zero-phase band-pass filtered between the lowest analysis
    edge and the highest analysis edge (Butterworth, order
    :math:`\min(n_1, n_N)`):

    .. math::
        L_{ref} = \text{RMS}(\text{BP}_{[f_{lo,1}, f_{hi,N}]}(x))

    **Stage 1: Analysis filtering** (per channel :math:`i`)

    .. math::
        x_i = \text{filtfilt}(b_i, a_i, x), \qquad L_i = \text{RMS}(x_i)

    **Stage 2: Envelope extraction**

    Low-pass (rectify, zero-phase low-pass, clamp) or Hilbert magnitude,
    normalised so that :math:`\max_t e_i(t) = 1`.

    **Stage 3: Carrier synthesis**

    Noise (same seed for every channel), sine at the synthesis centre
    frequency, low-noise noise or PSHC in the synthesis band.

    **Stage 4: Modulation, post-filtering, level restoration**

    .. math::
        y_i = \text{filtfilt}(b^s_i, a^s_i, e_i \cdot c_i), \qquad
        y_i \leftarrow y_i \frac{L_i}{\text{RMS}(y_i)}

    **Stage 5: Recombination**

    .. math::
        y = \sum_i y_i, \qquad y \leftarrow y \frac{L_{ref}}{\text{RMS}(y)}

    Parameters
    ----------
    fs : float
        Sampling rate in Hz. Input signals must use this rate.

    analysis_filters : FilterBank or mapping
        Analysis filter bank (mandatory).

    synthesis_filters : FilterBank or mapping, optional
        Synthesis filter bank. Default: ``None`` (analysis filters are reused
        and a :class:`~torch_vocoder.common.errors.SynthesisFiltersWarning` is
        emitted).

    envelope_kwargs : dict, optional
        Overrides of the envelope defaults:

        - ``method`` (str): ``'low-pass'`` or ``'hilbert'``. Default: ``'low-pass'``.
        - ``rectify`` (str): ``'half-wave'`` or ``'full-wave'``. Default: ``'half-wave'``.
        - ``fc`` (float or list): Low-pass cutoff in Hz. Default: 250.
        - ``order`` (int or list): Low-pass order. Default: 2.

    synth_kwargs : dict, optional
        Overrides of the synthesis defaults:

        - ``carrier`` (str): ``'noise'``, ``'sine'``, ``'low-noise'``, ``'pshc'``.
          Default: ``'noise'``.
        - ``filter_before`` (bool): Filter the noise before modulation. Default: False.
        - ``filter_after`` (bool): Filter after modulation. Default: True.
        - ``f0`` (float): PSHC fundamental frequency (required for ``'pshc'``).

    random_seed : int, optional
        Seed of every stochastic carrier. Default: time-derived.

    return_stages : bool, optional
        If True, ``forward`` also returns :class:`ChannelResults`. Default: False.

    dtype : torch.dtype, optional
        Computation data type. Only torch.float64 is accepted: the
        transfer-function band-pass filters of narrow low bands are unstable
        in float32 and their output diverges to NaN.

    Attributes
    ----------
    config : VocoderConfig
        Resolved parameters.

    num_channels : int
        Number of channels :math:`N`.

    reference_filter : ButterworthFilter
        Stage 0 band-pass filter.

    envelope : EnvelopeExtractor
        Stage 2 module.

    carrier : CarrierGenerator
        Stage 3 module.

    Input Shape
    -----------
    x : torch.Tensor
        :math:`(T,)` or :math:`(B, T)`.

    Output Shape
    ------------
    Same as input. With ``return_stages=True`` a tuple ``(y, ChannelResults)``.

    Examples
    --------
    >>> import torch
    >>> from torch_vocoder import Vocoder, FilterBank
    >>>
    >>> fs = 16000
    >>> fb = FilterBank.from_edges([100, 500, 4000], fs=fs, order=3)
    >>> voc = Vocoder(fs, fb, synthesis_filters=fb, random_seed=42)
    >>> t = torch.arange(fs, dtype=torch.float64) / fs
    >>> y = voc(torch.sin(2 * torch.pi * 300 * t))
    >>> y.shape
    torch.Size([16000])

    **Hilbert envelope and sine carrier:**

    >>> voc = Vocoder(fs, fb, synthesis_filters=fb,
    ...               envelope_kwargs={'method': 'hilbert'},
    ...               synth_kwargs={'carrier': 'sine'})

    Notes
    -----
    **Random seed:** every channel's noise generator is seeded with the same
    value, so unfiltered noise carriers are identical across channels.

    **Clipping:** the output amplitude is not bounded.

    See Also
    --------
    vocode : Functional interface taking a parameter mapping.
    """

    def __init__(self,
                 fs: float,
                 analysis_filters: Union[FilterBank, Mapping[str, Any]],
                 synthesis_filters: Optional[Union[FilterBank, Mapping[str, Any]]] = None,
                 envelope_kwargs: Optional[Dict[str, Any]] = None,
                 synth_kwargs: Optional[Dict[str, Any]] = None,
                 random_seed: Optional[int] = None,
                 return_stages: bool = False,
                 dtype: torch.dtype = torch.float64):
        super().__init__()

        if dtype != torch.float64:
            raise VocoderConfigurationError(
                f"dtype must be torch.float64, got {dtype} (band-pass filters in transfer-function form "
                f"are unstable in lower precision)")

        params = {'analysis_filters': analysis_filters,
                  'synthesis_filters': synthesis_filters,
                  'envelope': envelope_kwargs or {},
                  'synth': synth_kwargs or {},
                  'random_seed': random_seed}
        self.config = resolve_parameters(params, fs=fs)

        self.fs = fs
        self.return_stages = return_stages
        self.dtype = dtype
        self.num_channels = self.config.num_channels

        analysis = self.config.analysis_filters
        synthesis = self.config.synthesis_filters
        env = self.config.envelope
        syn = self.config.synth

        # Stage 0: Reference band-pass over the whole analysis range
        self.reference_filter = ButterworthFilter(order=min(int(analysis.order[0]), int(analysis.order[-1])),
                                                  cutoff=[float(analysis.lower[0]), float(analysis.upper[-1])],
                                                  fs=fs,
                                                  btype='band',
                                                  dtype=dtype)

        # Stage 1: Analysis filters
        self.register_buffer('analysis_b', analysis.filter_b.to(dtype))
        self.register_buffer('analysis_a', analysis.filter_a.to(dtype))

        # Stage 2: Envelope
        self.envelope = EnvelopeExtractor(fs=fs,
                                          num_channels=self.num_channels,
                                          method=env.method,
                                          rectify=env.rectify,
                                          fc=env.fc or None,
                                          order=env.order or None,
                                          dtype=dtype)

        # Stage 3: Carriers
        self.carrier = CarrierGenerator(fs=fs,
                                        synthesis_filters=synthesis,
                                        carrier=syn.carrier,
                                        filter_before=syn.filter_before,
                                        f0=syn.f0,
                                        random_seed=self.config.random_seed,
                                        dtype=dtype)

        # Stage 4: Post-filter
        self.filter_after = syn.filter_after
        self.register_buffer('synthesis_b', synthesis.filter_b.to(dtype))
        self.register_buffer('synthesis_a', synthesis.filter_a.to(dtype))

    @classmethod
    def from_config(cls, fs: float, config: VocoderConfig, return_stages: bool = False,
                    dtype: torch.dtype = torch.float64) -> 'Vocoder':
        """Build a vocoder from an already resolved :class:`VocoderConfig`."""
        env = config.envelope
        envelope_kwargs = {'method': env.method, 'rectify': env.rectify}
        if env.fc:
            envelope_kwargs.update(fc=list(env.fc), order=list(env.order))
        synth_kwargs = {'carrier': config.synth.carrier,
                        'filter_before': config.synth.filter_before,
                        'filter_after': config.synth.filter_after,
                        'f0': config.synth.f0}
        return cls(fs,
                   config.analysis_filters,
                   synthesis_filters=config.synthesis_filters,
                   envelope_kwargs=envelope_kwargs,
                   synth_kwargs=synth_kwargs,
                   random_seed=config.random_seed,
                   return_stages=return_stages,
                   dtype=dtype)

    def forward(self, x: torch.Tensor) -> Union[torch.Tensor, Tuple[torch.Tensor, ChannelResults]]:
        """
        Vocode the input signal.

        Parameters
        ----------
        x : torch.Tensor
            Input signal sampled at ``fs``. Shape: (T,) or (B, T).

        Returns
        -------
        torch.Tensor or tuple
            Vocoded signal (same shape as input), plus :class:`ChannelResults`
            when ``return_stages=True``.

        Raises
        ------
        VocoderComputationError
            Zero or non-finite envelope peak, channel RMS or output RMS.
        """
        original_shape = x.shape
        if x.ndim == 1:
            x = x.unsqueeze(0)  # [T] -> [1, T]
        x = x.to(dtype=self.analysis_b.dtype)
        batch_size, n_samples = x.shape

        logger.debug("Vocoding %d x %d samples through %d channels", batch_size, n_samples, self.num_channels)

        # Stage 0: Reference level, [B]
        reference_level = torch_rms(self.reference_filter(x))

        # Stage 1: Analysis, [B, N, T]
        bands = torch_filtfilt(self.analysis_b, self.analysis_a,
                               x.unsqueeze(1).expand(batch_size, self.num_channels, n_samples))
        levels = torch_rms(bands)

        # Stage 2: Envelope, [B, N, T]
        envelopes = self.envelope(bands)

        # Stage 3: Carriers, [N, T]
        carriers = self.carrier(n_samples)

        # Stage 4: Modulation, post-filter, level restoration
        channels = envelopes * carriers
        if self.filter_after:
            channels = torch_filtfilt(self.synthesis_b, self.synthesis_a, channels)
        channels = restore_levels(channels, levels)

        # Stage 5: Recombination
        output = recombine(channels, reference_level)

        if len(original_shape) == 1:
            output = output.squeeze(0)

        if not self.return_stages:
            return output

        stages = ChannelResults(bands=bands,
                                levels=levels,
                                envelopes=envelopes,
                                carriers=carriers,
                                channels=channels,
                                reference_level=reference_level)
        if len(original_shape) == 1:
            stages = ChannelResults(bands=bands.squeeze(0),
                                    levels=levels.squeeze(0),
                                    envelopes=envelopes.squeeze(0),
                                    carriers=carriers,
                                    channels=channels.squeeze(0),
                                    reference_level=reference_level.squeeze(0))
        return output, stages

    def extra_repr(self) -> str:
        return (f"fs={self.fs}, num_channels={self.num_channels}, "
                f"filter_after={self.filter_after}, return_stages={self.return_stages}")


def restore_levels(channels: torch.Tensor, levels: torch.Tensor) -> torch.Tensor:
    """
    Rescale each channel so its RMS equals ``levels``.

    Parameters
    ----------
    channels : torch.Tensor
        Channel signals, shape (..., N, T).

    levels : torch.Tensor
        Target RMS, shape (..., N).

    Raises
    ------
    VocoderComputationError
        For the first channel whose RMS is zero or non-finite.
    """
    current = torch_rms(channels)
    bad = (~torch.isfinite(current) | (current == 0)).reshape(-1, channels.shape[-2]).any(dim=0)
    if bool(bad.any()):
        channel = int(torch.nonzero(bad)[0])
        raise VocoderComputationError("channel output has zero or non-finite RMS, cannot restore its level",
                                      channel=channel, stage='level')
    return channels / current.unsqueeze(-1) * levels.unsqueeze(-1)


def recombine(channels: torch.Tensor, reference_level: torch.Tensor) -> torch.Tensor:
    """
    Sum channels and rescale the sum to ``reference_level``.

    Parameters
    ----------
    channels : torch.Tensor
        Channel signals, shape (..., N, T).

    reference_level : torch.Tensor
        Target RMS, shape (...).

    Raises
    ------
    VocoderComputationError
        If the summed signal has zero or non-finite RMS.
    """
    y = channels.sum(dim=-2)
    current = torch_rms(y)
    if bool((~torch.isfinite(current) | (current == 0)).any()):
        raise VocoderComputationError("recombined output has zero or non-finite RMS, cannot restore the "
                                      "reference level", stage='recombine')
    return y / current.unsqueeze(-1) * reference_level.unsqueeze(-1)


def vocode(x: torch.Tensor,
           fs: float,
           params: Mapping[str, Any]) -> Tuple[torch.Tensor, float, VocoderConfig]:
    """
    Band-vocode ``x`` using the parameters in ``params``.

    Parameters
    ----------
    x : torch.Tensor or array_like
        Input signal, shape (T,) or (B, T).

    fs : float
        Sampling rate in Hz.

    params : mapping
        ``analysis_filters`` (mandatory), ``synthesis_filters``, ``envelope``,
        ``synth`` and ``random_seed``, merged over the defaults (see
        :data:`torch_vocoder.common.config.DEFAULT_PARAMETERS`).

    Returns
    -------
    tuple
        ``(y, fs, config)``: vocoded signal, unchanged sampling rate and the
        resolved :class:`VocoderConfig`.

    Examples
    --------
    >>> from torch_vocoder import vocode, filter_bands
    >>> fb = filter_bands((100, 4000), 8, fs=16000)
    >>> y, fs_out, cfg = vocode(x, 16000, {'analysis_filters': fb,
    ...                                   'synthesis_filters': fb,
    ...                                   'synth': {'carrier': 'sine'}})
    """
    if not isinstance(x, torch.Tensor):
        x = torch.as_tensor(np.asarray(x, dtype=np.float64))
    config = resolve_parameters(params, fs=fs)
    model = Vocoder.from_config(fs, config).to(x.device)
    with torch.no_grad():
        y = model(x)
    return y, fs, config
