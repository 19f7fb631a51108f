"""
Vocoder Parameter Resolution
============================

Author:
    Stefano Giacomelli - Ph.D. candidate @ DISIM dpt. - University of L'Aquila

License:
    GNU General Public License v3.0 or later (GPLv3+)

Turns caller parameters (a nested mapping, possibly partial) into a fully
populated, validated and immutable :class:`VocoderConfig`:

1. :func:`merge_parameters` overlays the caller mapping on
   :data:`DEFAULT_PARAMETERS`, recursing only where both sides are mappings.
2. :func:`resolve_parameters` checks the filter banks, parses the envelope
   method, rectification and carrier into closed enums, broadcasts the
   per-channel envelope parameters and fills in the random seed.

Every configuration error is raised here, before any signal is filtered.
"""

import logging
import warnings
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from torch_vocoder.common.errors import VocoderConfigurationError, SynthesisFiltersWarning
from torch_vocoder.common.filterbanks import FilterBank

logger = logging.getLogger(__name__)

DEFAULT_PARAMETERS: Dict[str, Any] = {
    'envelope': {
        'method': 'low-pass',
        'rectify': 'half-wave',
        'fc': 250.0,
        'order': 2,
    },
    'synth': {
        'carrier': 'noise',
        'filter_before': False,
        'filter_after': True,
        'f0': None,
    },
    'random_seed': None,
}

# ---------------------------------------------------- Variants ----------------------------------------------

class _AliasedEnum(str, Enum):
    """String enum accepting the aliases listed in ``_aliases()``."""

    @classmethod
    def _aliases(cls) -> Dict[str, str]:
        return {}

    @classmethod
    def parse(cls, value: Union[str, '_AliasedEnum']):
        if isinstance(value, cls):
            return value
        key = str(value).lower()
        key = cls._aliases().get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise VocoderConfigurationError(
                f"{cls.__name__} '{value}' is unknown. Choose one of {[m.value for m in cls]}.") from None


class EnvelopeMethod(_AliasedEnum):
    LOW_PASS = 'low-pass'
    HILBERT = 'hilbert'

    @classmethod
    def _aliases(cls) -> Dict[str, str]:
        return {'lp': 'low-pass', 'low': 'low-pass'}


class Rectification(_AliasedEnum):
    HALF_WAVE = 'half-wave'
    FULL_WAVE = 'full-wave'

    @classmethod
    def _aliases(cls) -> Dict[str, str]:
        return {'half': 'half-wave', 'full': 'full-wave'}


class Carrier(_AliasedEnum):
    NOISE = 'noise'
    SINE = 'sine'
    LOW_NOISE = 'low-noise'
    PSHC = 'pshc'

    @classmethod
    def _aliases(cls) -> Dict[str, str]:
        return {'sin': 'sine', 'low-noise-noise': 'low-noise', 'lnn': 'low-noise'}

# ----------------------------------------------------- Records ----------------------------------------------

@dataclass(frozen=True)
class EnvelopeConfig:
    """
    Envelope extraction settings.

    ``fc`` and ``order`` hold one value per channel for the low-pass method
    and are empty for the Hilbert method.
    """

    method: EnvelopeMethod = EnvelopeMethod.LOW_PASS
    rectify: Rectification = Rectification.HALF_WAVE
    fc: Tuple[float, ...] = ()
    order: Tuple[int, ...] = ()


@dataclass(frozen=True)
class SynthConfig:
    """Carrier and re-synthesis settings."""

    carrier: Carrier = Carrier.NOISE
    filter_before: bool = False
    filter_after: bool = True
    f0: Optional[float] = None


@dataclass(frozen=True, eq=False)
class VocoderConfig:
    """Fully resolved vocoder parameters."""

    analysis_filters: FilterBank
    synthesis_filters: FilterBank
    envelope: EnvelopeConfig
    synth: SynthConfig
    random_seed: int

    @property
    def num_channels(self) -> int:
        return self.analysis_filters.num_channels

# ---------------------------------------------------- Resolution --------------------------------------------

def merge_parameters(defaults: Mapping[str, Any], overrides: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Overlay ``overrides`` on ``defaults`` without mutating either.

    Nested mappings are merged key by key when both sides hold a mapping;
    any other override value replaces the default wholesale.

    Examples
    --------
    >>> merge_parameters({'synth': {'carrier': 'noise', 'filter_after': True}},
    ...                  {'synth': {'carrier': 'sine'}})
    {'synth': {'carrier': 'sine', 'filter_after': True}}
    """
    merged = {k: (merge_parameters(v, {}) if isinstance(v, Mapping) else v) for k, v in defaults.items()}
    for key, value in overrides.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = merge_parameters(merged[key], value)
        else:
            merged[key] = value
    return merged


def broadcast_channel_parameter(value: Union[float, Sequence[float]],
                                n_channels: int,
                                name: str) -> Tuple[float, ...]:
    """
    Expand a scalar (or length-1 vector) to ``n_channels`` values.

    Raises
    ------
    VocoderConfigurationError
        If the length is neither 1 nor ``n_channels``.
    """
    values = np.atleast_1d(np.asarray(value, dtype=float)).reshape(-1)
    if values.size == 1:
        values = np.repeat(values, n_channels)
    if values.size != n_channels:
        raise VocoderConfigurationError(
            f"params.envelope.{name} [{values.size}] must be of length the number of channels [{n_channels}]")
    return tuple(float(v) for v in values)


def default_random_seed() -> int:
    """Time-derived seed: hundredths of the summed clock fields."""
    now = datetime.now()
    fields = (now.year, now.month, now.day, now.hour, now.minute, now.second + now.microsecond / 1e6)
    return int(round(sum(100 * f for f in fields)))


def _as_filter_bank(value: Any, name: str) -> FilterBank:
    if isinstance(value, FilterBank):
        return value
    if isinstance(value, Mapping):
        return FilterBank.from_dict(value)
    raise VocoderConfigurationError(
        f"'{name}' must be a FilterBank or a mapping of filter fields, got {type(value).__name__}")


def resolve_parameters(params: Optional[Mapping[str, Any]] = None,
                       fs: Optional[float] = None) -> VocoderConfig:
    """
    Merge ``params`` with the defaults and validate the result.

    Parameters
    ----------
    params : mapping, optional
        Caller parameters. ``analysis_filters`` is mandatory;
        ``synthesis_filters`` defaults to ``analysis_filters`` (with a
        :class:`SynthesisFiltersWarning`); ``envelope`` and ``synth`` are
        nested overrides; ``random_seed`` defaults to a time-derived value.

    fs : float, optional
        Sampling rate in Hz. When given, band edges of both filter banks are
        checked against the Nyquist frequency.

    Returns
    -------
    VocoderConfig

    Raises
    ------
    VocoderConfigurationError
        Missing analysis filters, mismatched channel counts, unknown
        variants, bad broadcast lengths, missing ``f0`` for ``'pshc'``,
        invalid band edges.
    """
    p = merge_parameters(DEFAULT_PARAMETERS, params or {})

    if p.get('analysis_filters') is None:
        raise VocoderConfigurationError(
            "The field 'analysis_filters' is mandatory and was not provided in the parameters.")
    analysis = _as_filter_bank(p['analysis_filters'], 'analysis_filters')

    if p.get('synthesis_filters') is None:
        warnings.warn("The analysis filters will be used for synthesis.", SynthesisFiltersWarning, stacklevel=3)
        synthesis = analysis
    else:
        synthesis = _as_filter_bank(p['synthesis_filters'], 'synthesis_filters')

    n_channels = analysis.num_channels
    if synthesis.num_channels != n_channels:
        raise VocoderConfigurationError(
            f"There should be as many analysis filters as synthesis filters "
            f"(analysis: {n_channels}, synthesis: {synthesis.num_channels}).")

    if fs is not None:
        analysis.validate(fs)
        synthesis.validate(fs)

    for section in ('envelope', 'synth'):
        if not isinstance(p[section], Mapping):
            raise VocoderConfigurationError(f"params.{section} must be a mapping, got {type(p[section]).__name__}")

    # Envelope
    env = p['envelope']
    method = EnvelopeMethod.parse(env.get('method'))
    if method is EnvelopeMethod.LOW_PASS:
        envelope = EnvelopeConfig(method=method,
                                  rectify=Rectification.parse(env.get('rectify')),
                                  fc=broadcast_channel_parameter(env.get('fc'), n_channels, 'fc'),
                                  order=tuple(int(o) for o in broadcast_channel_parameter(env.get('order'),
                                                                                          n_channels, 'order')))
    else:
        envelope = EnvelopeConfig(method=method)

    # Synthesis
    syn = p['synth']
    carrier = Carrier.parse(syn.get('carrier'))
    f0 = syn.get('f0')
    if carrier is Carrier.PSHC:
        if f0 is None:
            raise VocoderConfigurationError("The 'pshc' carrier requires params.synth.f0 (no default).")
        if float(f0) <= 0:
            raise VocoderConfigurationError(f"params.synth.f0 must be positive, got {f0}")
    synth = SynthConfig(carrier=carrier,
                        filter_before=bool(syn.get('filter_before')),
                        filter_after=bool(syn.get('filter_after')),
                        f0=None if f0 is None else float(f0))

    seed = p.get('random_seed')
    random_seed = default_random_seed() if seed is None else int(seed)

    logger.debug("Resolved vocoder parameters: %d channels, envelope=%s, carrier=%s, seed=%d",
                 n_channels, method.value, carrier.value, random_seed)

    return VocoderConfig(analysis_filters=analysis,
                         synthesis_filters=synthesis,
                         envelope=envelope,
                         synth=synth,
                         random_seed=random_seed)
