"""Reusable vocoder building blocks."""

from torch_vocoder.common.errors import (VocoderError,
                                         VocoderConfigurationError,
                                         VocoderComputationError,
                                         SynthesisFiltersWarning)
from torch_vocoder.common.filters import (torch_hilbert,
                                          torch_rms,
                                          butter_ba,
                                          pad_coefficients,
                                          torch_lfilter,
                                          torch_lfilter_zi,
                                          torch_filtfilt,
                                          ButterworthFilter)
from torch_vocoder.common.filterbanks import (FilterBank,
                                              filter_bands,
                                              band_edges,
                                              greenwood2f,
                                              f2greenwood,
                                              f2erbrate,
                                              erbrate2f)
from torch_vocoder.common.config import (DEFAULT_PARAMETERS,
                                         EnvelopeMethod,
                                         Rectification,
                                         Carrier,
                                         EnvelopeConfig,
                                         SynthConfig,
                                         VocoderConfig,
                                         merge_parameters,
                                         broadcast_channel_parameter,
                                         default_random_seed,
                                         resolve_parameters)
from torch_vocoder.common.envelope import EnvelopeExtractor, normalize_peak
from torch_vocoder.common.carriers import (noise_carrier,
                                           sine_carrier,
                                           lownoise_noise,
                                           pshc,
                                           CarrierGenerator)

__all__ = ["VocoderError", "VocoderConfigurationError", "VocoderComputationError", "SynthesisFiltersWarning",
           "torch_hilbert", "torch_rms", "butter_ba", "pad_coefficients",
           "torch_lfilter", "torch_lfilter_zi", "torch_filtfilt", "ButterworthFilter",
           "FilterBank", "filter_bands", "band_edges", "greenwood2f", "f2greenwood", "f2erbrate", "erbrate2f",
           "DEFAULT_PARAMETERS", "EnvelopeMethod", "Rectification", "Carrier",
           "EnvelopeConfig", "SynthConfig", "VocoderConfig",
           "merge_parameters", "broadcast_channel_parameter", "default_random_seed", "resolve_parameters",
           "EnvelopeExtractor", "normalize_peak",
           "noise_carrier", "sine_carrier", "lownoise_noise", "pshc", "CarrierGenerator",
           ]
