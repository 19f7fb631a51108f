"""
torch_vocoder: PyTorch Channel Vocoder
======================================

A PyTorch implementation of the channel (band) vocoder used to simulate
cochlear-implant processing in speech and hearing research. The input is split
into frequency bands, the temporal envelope of each band modulates a
substitute carrier, and the re-synthesised bands are summed with their
original levels restored.

**Key Features:**
    - Hardware-accelerated with PyTorch (CUDA, MPS, CPU)
    - All channels filtered in a single batched, zero-phase pass
    - MATLAB-compatible ``filtfilt`` edge handling
    - Noise, sine, low-noise noise and PSHC carriers
    - Reproducible: one independently seeded generator per channel

**Quick Start:**

    >>> import torch
    >>> import torch_vocoder
    >>>
    >>> fs = 16000
    >>> fb = torch_vocoder.filter_bands((100, 4000), 8, fs=fs, order=3)
    >>> audio = torch.randn(fs, dtype=torch.float64)  # 1 second at 16 kHz
    >>>
    >>> # Functional interface
    >>> y, fs_out, config = torch_vocoder.vocode(audio, fs, {'analysis_filters': fb,
    ...                                                      'synthesis_filters': fb,
    ...                                                      'random_seed': 42})
    >>>
    >>> # Or as a module
    >>> vocoder = torch_vocoder.Vocoder(fs, fb, synthesis_filters=fb,
    ...                                 synth_kwargs={'carrier': 'sine'})
    >>> y = vocoder(audio)

**Package Structure:**

    torch_vocoder/
    ├── models/             # End-to-end processing
    │   └── Vocoder                 - Channel vocoder (plus `vocode` function)
    │
    └── common/             # Reusable building blocks
        ├── filterbanks.py          - Analysis/synthesis filter banks
        ├── envelope.py             - Envelope extraction
        ├── carriers.py             - Carrier generators
        ├── config.py               - Parameter defaults and resolution
        ├── errors.py               - Exceptions and warnings
        └── filters.py              - Generic signal processing utilities

**Author:**
    Stefano Giacomelli - Ph.D. candidate @ DISIM dpt. - University of L'Aquila

**License:**
    GNU General Public License v3.0 or later (GPLv3+)

**Citations:**
    If you use this package in your research, please cite:

    - Gaudrain, E. (2016). "Vocoder, v1.0." Online code at
      https://github.com/egaudrain/vocoder, doi:10.5281/zenodo.48120.

**Version History:**
    - 0.1.0 (2026-10): Initial release
"""

# ============================================================================
# Package Metadata
# ============================================================================

__version__ = "0.1.0"
__author__ = "Stefano Giacomelli"
__email__ = "stefano.giacomelli@graduate.univaq.it"
__license__ = "GPL-3.0-or-later"
__description__ = "PyTorch Channel Vocoder - Cochlear-implant simulation with noise, sine, low-noise and PSHC carriers"

# ============================================================================
# Public API - Vocoder
# ============================================================================

from torch_vocoder.models.vocoder import Vocoder, ChannelResults, vocode

# ============================================================================
# Public API - Common Building Blocks
# ============================================================================

# --- Filter Banks ---
from torch_vocoder.common.filterbanks import (
    FilterBank,                         # Per-channel band-pass filters
    filter_bands,                       # Design a bank over a frequency range
    band_edges,                         # Band edges on a frequency scale
    greenwood2f,                        # Cochlear position to frequency
    f2greenwood,                        # Frequency to cochlear position
    f2erbrate,                          # Frequency to ERB rate
    erbrate2f,                          # ERB rate to frequency
)

# --- Parameters ---
from torch_vocoder.common.config import (
    DEFAULT_PARAMETERS,                 # Nested default parameters
    VocoderConfig,                      # Resolved parameters
    EnvelopeConfig,
    SynthConfig,
    EnvelopeMethod,
    Rectification,
    Carrier,
    merge_parameters,                   # Overlay overrides on defaults
    resolve_parameters,                 # Merge + validate
)

# --- Envelope & Carriers ---
from torch_vocoder.common.envelope import EnvelopeExtractor
from torch_vocoder.common.carriers import (
    CarrierGenerator,                   # Per-channel carriers from a filter bank
    noise_carrier,                      # Bipolar seeded noise
    sine_carrier,                       # Tones at centre frequencies
    lownoise_noise,                     # Flat-envelope band-limited noise
    pshc,                               # Pulse-spreading harmonic complex
)

# --- Errors ---
from torch_vocoder.common.errors import (
    VocoderError,
    VocoderConfigurationError,
    VocoderComputationError,
    SynthesisFiltersWarning,
)

# --- Generic Filters & Signal Processing ---
from torch_vocoder.common.filters import (
    torch_hilbert,                      # Analytic signal via Hilbert transform
    torch_rms,                          # Root-mean-square level
    butter_ba,                          # Validated Butterworth design
    ButterworthFilter,                  # Butterworth IIR filter module
    torch_lfilter,                      # Batched ba filtering
    torch_filtfilt,                     # Zero-phase filtering
)

# ============================================================================
# Package-Level Exports
# ============================================================================

__all__ = [
    # Vocoder
    "Vocoder",
    "ChannelResults",
    "vocode",

    # Filter banks
    "FilterBank",
    "filter_bands",
    "band_edges",
    "greenwood2f",
    "f2greenwood",
    "f2erbrate",
    "erbrate2f",

    # Parameters
    "DEFAULT_PARAMETERS",
    "VocoderConfig",
    "EnvelopeConfig",
    "SynthConfig",
    "EnvelopeMethod",
    "Rectification",
    "Carrier",
    "merge_parameters",
    "resolve_parameters",

    # Envelope & carriers
    "EnvelopeExtractor",
    "CarrierGenerator",
    "noise_carrier",
    "sine_carrier",
    "lownoise_noise",
    "pshc",

    # Errors
    "VocoderError",
    "VocoderConfigurationError",
    "VocoderComputationError",
    "SynthesisFiltersWarning",

    # Signal processing utilities
    "torch_hilbert",
    "torch_rms",
    "butter_ba",
    "ButterworthFilter",
    "torch_lfilter",
    "torch_filtfilt",
]

# ============================================================================
# Convenience: Group components by category for easier discovery
# ============================================================================

carriers = {
    'noise': noise_carrier,
    'sine': sine_carrier,
    'low-noise': lownoise_noise,
    'pshc': pshc,
}
