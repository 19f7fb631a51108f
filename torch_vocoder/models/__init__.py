"""Vocoder models."""

from torch_vocoder.models.vocoder import Vocoder, ChannelResults, vocode

__all__ = ["Vocoder",
           "ChannelResults",
           "vocode"
           ]
