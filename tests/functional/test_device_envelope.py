"""Device Compatibility Test Suite for envelope.py and carriers.py

This test suite verifies that the envelope extractor and the carrier
generators work correctly across all available devices (CPU, CUDA, MPS).

Contents:
- 2 nn.Module classes: EnvelopeExtractor, CarrierGenerator
- Functions: noise_carrier, sine_carrier, lownoise_noise, pshc

Test structure:
- Initialization with low-pass / Hilbert methods
- Application on (N, T) and (B, N, T) input
- Peak normalisation and zero-peak failure
- Carrier shapes, determinism and seed sharing
- Device transfer (CPU, CUDA, MPS)

Usage:
    # Standalone execution (tests all available devices)
    python test_device_envelope.py

    # pytest execution
    pytest test_device_envelope.py -v
"""

from typing import List

import pytest
import torch


# ================================================================================================
# Device Detection
# ================================================================================================

def get_available_devices() -> List[str]:
    """Detect all available PyTorch devices on the system."""
    devices = ['cpu']

    if torch.cuda.is_available():
        devices.append('cuda')

    if torch.backends.mps.is_available():
        devices.append('mps')

    return devices


def skip_if_no_float64(device: str):
    """MPS has no float64 support."""
    if device == 'mps':
        pytest.skip("float64 is not supported on MPS")


# ================================================================================================
# Test Data Factories
# ================================================================================================

def create_band_signals(device: str, batch_size: int = 2, n_channels: int = 4,
                        duration: float = 0.25, fs: int = 16000) -> torch.Tensor:
    """Amplitude-modulated tones, one per channel, shape (B, N, T)."""
    n_samples = int(fs * duration)
    t = torch.arange(n_samples, dtype=torch.float64, device=device) / fs
    fc = torch.linspace(300.0, 3000.0, n_channels, dtype=torch.float64, device=device).unsqueeze(-1)
    am = 1.0 + 0.8 * torch.sin(2 * torch.pi * 8.0 * t)
    x = am * torch.sin(2 * torch.pi * fc * t)
    return x.expand(batch_size, n_channels, n_samples).clone()


# ================================================================================================
# Test: EnvelopeExtractor
# ================================================================================================

@pytest.mark.parametrize("device", get_available_devices())
@pytest.mark.parametrize("method,rectify", [('low-pass', 'half-wave'), ('low-pass', 'full-wave'),
                                            ('hilbert', 'half-wave')])
def test_envelope_extractor(device, method, rectify):
    """Envelopes are non-negative with per-channel maximum exactly 1."""
    skip_if_no_float64(device)
    from torch_vocoder.common.envelope import EnvelopeExtractor

    print("\n" + "=" * 80)
    print(f"TEST: EnvelopeExtractor ({method}, {rectify}) - Device: {device.upper()}")
    print("=" * 80 + "\n")

    fs = 16000
    n_channels = 4
    env = EnvelopeExtractor(fs=fs, num_channels=n_channels, method=method, rectify=rectify,
                            fc=[250.0] * n_channels, order=[2] * n_channels).to(device)
    print(f"  Module: {env}")

    x = create_band_signals(device, n_channels=n_channels, fs=fs)
    e = env(x)
    print(f"  Input: {tuple(x.shape)} -> Output: {tuple(e.shape)}")

    assert e.shape == x.shape
    assert e.device.type == device
    assert torch.all(e >= 0)
    assert torch.allclose(e.amax(dim=-1), torch.ones(2, n_channels, dtype=torch.float64, device=device))

    # 2D input, [N, T]
    e2 = env(x[0])
    assert torch.allclose(e2, e[0])

    print(f"\n✓ EnvelopeExtractor ({method}) passed on {device.upper()}\n")


def test_envelope_aliases_and_per_channel_design():
    """Aliases resolve and per-channel cutoffs produce distinct low-pass rows."""
    from torch_vocoder.common.config import EnvelopeMethod, Rectification
    from torch_vocoder.common.envelope import EnvelopeExtractor

    env = EnvelopeExtractor(fs=16000, num_channels=2, method='lp', rectify='full',
                            fc=[50.0, 400.0], order=[2, 4])
    assert env.method is EnvelopeMethod.LOW_PASS
    assert env.rectify is Rectification.FULL_WAVE
    assert env.b.shape == (2, 5)
    assert not torch.allclose(env.b[0], env.b[1])
    assert 'fc=[50.0, 400.0]' in env.extra_repr()

    hil = EnvelopeExtractor(fs=16000, num_channels=2, method='hilbert')
    assert hil.b is None


def test_envelope_rejects_bad_cutoff():
    """A cutoff above Nyquist names the channel."""
    from torch_vocoder.common.envelope import EnvelopeExtractor
    from torch_vocoder.common.errors import VocoderConfigurationError

    with pytest.raises(VocoderConfigurationError, match="Channel 1"):
        EnvelopeExtractor(fs=16000, num_channels=2, fc=[250.0, 9000.0], order=[2, 2])


@pytest.mark.parametrize("method", ['low-pass', 'hilbert'])
def test_envelope_zero_peak_raises(method):
    """A silent channel fails at normalisation instead of producing NaN."""
    from torch_vocoder.common.envelope import EnvelopeExtractor
    from torch_vocoder.common.errors import VocoderComputationError

    env = EnvelopeExtractor(fs=16000, num_channels=3, method=method, fc=[250.0] * 3, order=[2] * 3)
    x = create_band_signals('cpu', batch_size=1, n_channels=3)
    x[0, 2] = 0.0

    with pytest.raises(VocoderComputationError) as exc_info:
        env(x)
    assert exc_info.value.channel == 2
    assert exc_info.value.stage == 'envelope'
    assert str(exc_info.value).startswith("Channel 2:")


def test_normalize_peak_non_finite_raises():
    """A NaN or infinite envelope is rejected like a zero one."""
    from torch_vocoder.common.envelope import normalize_peak
    from torch_vocoder.common.errors import VocoderComputationError

    env = torch.rand(2, 3, 1000, dtype=torch.float64) + 0.1
    assert torch.allclose(normalize_peak(env).amax(dim=-1), torch.ones(2, 3, dtype=torch.float64))

    for bad_value in [float('nan'), float('inf')]:
        corrupted = env.clone()
        corrupted[1, 1, 500] = bad_value
        with pytest.raises(VocoderComputationError) as exc_info:
            normalize_peak(corrupted)
        assert exc_info.value.channel == 1
        assert exc_info.value.stage == 'envelope'


# ================================================================================================
# Test: Carrier generators
# ================================================================================================

@pytest.mark.parametrize("device", get_available_devices())
def test_noise_carrier_shared_seed(device):
    """Every channel gets the same bipolar sequence for a given seed."""
    skip_if_no_float64(device)
    from torch_vocoder.common.carriers import noise_carrier

    c = noise_carrier(4000, 5, seed=42, device=torch.device(device))
    print(f"  Noise carrier: {tuple(c.shape)} on {c.device}")

    assert c.shape == (5, 4000)
    assert set(torch.unique(c).tolist()) <= {-1.0, 1.0}
    for i in range(1, 5):
        assert torch.equal(c[i], c[0])

    assert torch.equal(c, noise_carrier(4000, 5, seed=42, device=torch.device(device)))
    assert not torch.equal(c, noise_carrier(4000, 5, seed=43, device=torch.device(device)))


@pytest.mark.parametrize("device", get_available_devices())
@pytest.mark.parametrize("carrier", ['noise', 'sine', 'low-noise', 'pshc'])
def test_carrier_generator(device, carrier):
    """CarrierGenerator produces (N, T) carriers on the module device."""
    skip_if_no_float64(device)
    from torch_vocoder.common.carriers import CarrierGenerator
    from torch_vocoder.common.filterbanks import FilterBank

    print("\n" + "=" * 80)
    print(f"TEST: CarrierGenerator ({carrier}) - Device: {device.upper()}")
    print("=" * 80 + "\n")

    fs = 16000
    fb = FilterBank.from_edges([100.0, 500.0, 4000.0], fs=fs, order=3)
    gen = CarrierGenerator(fs=fs, synthesis_filters=fb, carrier=carrier, f0=100.0, random_seed=7).to(device)
    print(f"  Module: {gen}")

    c = gen(8000)
    assert c.shape == (2, 8000)
    assert c.device.type == device
    assert torch.all(torch.isfinite(c))
    assert torch.equal(c, gen(8000))

    print(f"\n✓ CarrierGenerator ({carrier}) passed on {device.upper()}\n")


def test_carrier_generator_filter_before():
    """filter_before band-limits the noise; without it the rows are identical."""
    from torch_vocoder.common.carriers import CarrierGenerator
    from torch_vocoder.common.filterbanks import FilterBank
    from torch_vocoder.common.filters import torch_rms

    fb = FilterBank.from_edges([100.0, 500.0, 4000.0], fs=16000, order=3)
    raw = CarrierGenerator(16000, fb, carrier='noise', random_seed=3)(4000)
    filtered = CarrierGenerator(16000, fb, carrier='noise', filter_before=True, random_seed=3)(4000)

    assert torch.equal(raw[0], raw[1])
    assert not torch.allclose(filtered[0], filtered[1])
    assert torch.all(torch_rms(filtered) < torch_rms(raw))


def test_sine_carrier_frequency():
    """Sine carriers peak at the channel centre frequency."""
    from torch_vocoder.common.carriers import sine_carrier

    fs = 16000
    center = torch.tensor([250.0, 1000.0], dtype=torch.float64)
    c = sine_carrier(fs, fs, center)
    assert c[:, 0].abs().max() == 0.0
    peaks = torch.fft.rfft(c).abs().argmax(dim=-1)
    assert peaks.tolist() == [250, 1000]


def test_pshc_requires_harmonic_in_band():
    """PSHC fails when no harmonic of f0 lies inside the band."""
    from torch_vocoder.common.carriers import pshc
    from torch_vocoder.common.errors import VocoderConfigurationError

    with pytest.raises(VocoderConfigurationError, match="No harmonic"):
        pshc(1000, 16000, 510.0, 590.0, f0=100.0, seed=0)
    with pytest.raises(VocoderConfigurationError):
        pshc(1000, 16000, 500.0, 900.0, f0=0.0, seed=0)


# ================================================================================================
# Main
# ================================================================================================

def main():
    """Run the device tests on all float64-capable devices."""
    devices = [d for d in get_available_devices() if d != 'mps']
    failures = 0
    for device in devices:
        for method, rectify in [('low-pass', 'half-wave'), ('hilbert', 'half-wave')]:
            try:
                test_envelope_extractor(device, method, rectify)
            except Exception as e:
                failures += 1
                print(f"✗ EnvelopeExtractor ({method}) FAILED on {device}: {e}")
        for carrier in ['noise', 'sine', 'low-noise', 'pshc']:
            try:
                test_carrier_generator(device, carrier)
            except Exception as e:
                failures += 1
                print(f"✗ CarrierGenerator ({carrier}) FAILED on {device}: {e}")
    return 0 if failures == 0 else 1


if __name__ == "__main__":
    exit(main())
