"""
Vocoder Parameters - Test Suite

Contents:
1. merge_parameters: recursive, non-mutating overlay of overrides on defaults
2. Variant parsing: envelope method, rectification, carrier (with aliases)
3. broadcast_channel_parameter: scalar / length-1 / length-N / invalid
4. resolve_parameters: mandatory fields, synthesis-filter default warning,
   channel-count mismatch, pshc f0, band-edge validation, random seed

Structure:
- Pure configuration checks, no signal processing
"""

import copy
import warnings

import pytest

from torch_vocoder.common.config import (DEFAULT_PARAMETERS, Carrier, EnvelopeMethod, Rectification,
                                         broadcast_channel_parameter, default_random_seed,
                                         merge_parameters, resolve_parameters)
from torch_vocoder.common.errors import SynthesisFiltersWarning, VocoderConfigurationError
from torch_vocoder.common.filterbanks import FilterBank, filter_bands

FS = 16000


@pytest.fixture(scope='module')
def two_band_bank():
    return FilterBank.from_edges([100.0, 500.0, 4000.0], fs=FS, order=3)


# ------------------------------------------------------------------------------------------------
# merge_parameters
# ------------------------------------------------------------------------------------------------

def test_merge_parameters_overlays_nested_fields():
    """Nested overrides replace single leaves and keep the other defaults."""
    before = copy.deepcopy(DEFAULT_PARAMETERS)
    merged = merge_parameters(DEFAULT_PARAMETERS, {'synth': {'carrier': 'sine'}, 'random_seed': 3})

    print(f"Merged: {merged}")
    assert merged['synth']['carrier'] == 'sine'
    assert merged['synth']['filter_after'] is True
    assert merged['envelope'] == DEFAULT_PARAMETERS['envelope']
    assert merged['random_seed'] == 3
    assert DEFAULT_PARAMETERS == before
    assert merged['envelope'] is not DEFAULT_PARAMETERS['envelope']


def test_merge_parameters_non_mapping_replaces_wholesale():
    """A non-mapping override replaces a mapping default."""
    merged = merge_parameters({'a': {'x': 1}, 'b': 2}, {'a': None, 'c': {'y': 3}})
    assert merged == {'a': None, 'b': 2, 'c': {'y': 3}}


# ------------------------------------------------------------------------------------------------
# Variants
# ------------------------------------------------------------------------------------------------

@pytest.mark.parametrize("value,expected", [
    ('low-pass', EnvelopeMethod.LOW_PASS), ('lp', EnvelopeMethod.LOW_PASS), ('low', EnvelopeMethod.LOW_PASS),
    ('hilbert', EnvelopeMethod.HILBERT), ('Hilbert', EnvelopeMethod.HILBERT),
])
def test_envelope_method_aliases(value, expected):
    assert EnvelopeMethod.parse(value) is expected


@pytest.mark.parametrize("value,expected", [
    ('half-wave', Rectification.HALF_WAVE), ('half', Rectification.HALF_WAVE),
    ('full-wave', Rectification.FULL_WAVE), ('full', Rectification.FULL_WAVE),
])
def test_rectification_aliases(value, expected):
    assert Rectification.parse(value) is expected


@pytest.mark.parametrize("value,expected", [
    ('noise', Carrier.NOISE), ('sine', Carrier.SINE), ('sin', Carrier.SINE),
    ('low-noise', Carrier.LOW_NOISE), ('low-noise-noise', Carrier.LOW_NOISE), ('lnn', Carrier.LOW_NOISE),
    ('pshc', Carrier.PSHC),
])
def test_carrier_aliases(value, expected):
    assert Carrier.parse(value) is expected


@pytest.mark.parametrize("enum_cls", [EnvelopeMethod, Rectification, Carrier])
def test_unknown_variant_is_configuration_error(enum_cls):
    with pytest.raises(VocoderConfigurationError, match="unknown"):
        enum_cls.parse('bogus')


# ------------------------------------------------------------------------------------------------
# broadcast_channel_parameter
# ------------------------------------------------------------------------------------------------

def test_broadcast_channel_parameter():
    assert broadcast_channel_parameter(250, 3, 'fc') == (250.0, 250.0, 250.0)
    assert broadcast_channel_parameter([100], 2, 'fc') == (100.0, 100.0)
    assert broadcast_channel_parameter([100, 200], 2, 'fc') == (100.0, 200.0)

    with pytest.raises(VocoderConfigurationError, match=r"fc \[3\].*\[2\]"):
        broadcast_channel_parameter([1, 2, 3], 2, 'fc')


# ------------------------------------------------------------------------------------------------
# resolve_parameters
# ------------------------------------------------------------------------------------------------

def test_resolve_defaults(two_band_bank):
    """Defaults: low-pass 250 Hz order 2 half-wave, noise carrier, filter_after only."""
    config = resolve_parameters({'analysis_filters': two_band_bank,
                                 'synthesis_filters': two_band_bank,
                                 'random_seed': 42}, fs=FS)

    print(f"Envelope: {config.envelope}")
    print(f"Synth: {config.synth}")
    assert config.num_channels == 2
    assert config.envelope.method is EnvelopeMethod.LOW_PASS
    assert config.envelope.rectify is Rectification.HALF_WAVE
    assert config.envelope.fc == (250.0, 250.0)
    assert config.envelope.order == (2, 2)
    assert config.synth.carrier is Carrier.NOISE
    assert config.synth.filter_before is False
    assert config.synth.filter_after is True
    assert config.synth.f0 is None
    assert config.random_seed == 42


def test_resolve_requires_analysis_filters():
    with pytest.raises(VocoderConfigurationError, match="analysis_filters"):
        resolve_parameters({})


def test_resolve_warns_when_synthesis_filters_missing(two_band_bank):
    with pytest.warns(SynthesisFiltersWarning):
        config = resolve_parameters({'analysis_filters': two_band_bank, 'random_seed': 0})
    assert config.synthesis_filters is config.analysis_filters


def test_resolve_no_warning_with_synthesis_filters(two_band_bank):
    with warnings.catch_warnings():
        warnings.simplefilter('error')
        resolve_parameters({'analysis_filters': two_band_bank, 'synthesis_filters': two_band_bank,
                            'random_seed': 0})


def test_resolve_channel_count_mismatch():
    """8 analysis vs 6 synthesis channels is fatal."""
    analysis = filter_bands((100.0, 4000.0), 8, fs=FS)
    synthesis = filter_bands((100.0, 4000.0), 6, fs=FS)

    with pytest.raises(VocoderConfigurationError, match="analysis: 8, synthesis: 6"):
        resolve_parameters({'analysis_filters': analysis, 'synthesis_filters': synthesis})


def test_resolve_pshc_requires_f0(two_band_bank):
    base = {'analysis_filters': two_band_bank, 'synthesis_filters': two_band_bank}
    with pytest.raises(VocoderConfigurationError, match="f0"):
        resolve_parameters({**base, 'synth': {'carrier': 'pshc'}})
    with pytest.raises(VocoderConfigurationError, match="positive"):
        resolve_parameters({**base, 'synth': {'carrier': 'pshc', 'f0': -10}})

    config = resolve_parameters({**base, 'synth': {'carrier': 'pshc', 'f0': 120}, 'random_seed': 1})
    assert config.synth.f0 == 120.0


def test_resolve_hilbert_ignores_lowpass_parameters(two_band_bank):
    """The Hilbert method does not broadcast fc/order, so their length is irrelevant."""
    config = resolve_parameters({'analysis_filters': two_band_bank, 'synthesis_filters': two_band_bank,
                                 'envelope': {'method': 'hilbert', 'fc': [1, 2, 3]}, 'random_seed': 0})
    assert config.envelope.method is EnvelopeMethod.HILBERT
    assert config.envelope.fc == ()


def test_resolve_bad_broadcast_length(two_band_bank):
    with pytest.raises(VocoderConfigurationError, match="order"):
        resolve_parameters({'analysis_filters': two_band_bank, 'synthesis_filters': two_band_bank,
                            'envelope': {'order': [2, 2, 2]}})


def test_resolve_validates_band_edges_against_nyquist():
    """A bank designed for 44.1 kHz is rejected at 16 kHz."""
    bank = FilterBank.from_edges([1000.0, 4000.0, 12000.0], fs=44100)
    with pytest.raises(VocoderConfigurationError, match="Channel 1"):
        resolve_parameters({'analysis_filters': bank, 'synthesis_filters': bank}, fs=FS)


def test_resolve_rejects_non_mapping_sections(two_band_bank):
    with pytest.raises(VocoderConfigurationError, match="params.synth"):
        resolve_parameters({'analysis_filters': two_band_bank, 'synthesis_filters': two_band_bank,
                            'synth': 'sine'})


def test_default_random_seed_is_time_derived(two_band_bank):
    seed = default_random_seed()
    print(f"Time-derived seed: {seed}")
    assert isinstance(seed, int)
    assert seed > 100 * 2000

    config = resolve_parameters({'analysis_filters': two_band_bank, 'synthesis_filters': two_band_bank})
    assert isinstance(config.random_seed, int)
