"""
Audio format conversion between Twilio media streams and the OpenAI Realtime API.

Twilio delivers and expects 8kHz G.711 mu-law. The Realtime API accepts that
encoding natively (``g711_ulaw``), in which case payloads are passed through
untouched. When the provider is configured for ``pcm16`` (24kHz, 16-bit little
endian), frames are transcoded and resampled in both directions.
"""

import base64
import logging

import numpy as np

from restaurant_agent.config.constants import (
    AUDIO_FORMAT_G711_ULAW,
    AUDIO_FORMAT_PCM16,
    CARRIER_SAMPLE_RATE,
    LOGGER_NAME,
    PROVIDER_PCM16_SAMPLE_RATE,
)

logger = logging.getLogger(LOGGER_NAME)

MULAW_BIAS = 0x84
MULAW_CLIP = 32635
SUPPORTED_PROVIDER_FORMATS = (AUDIO_FORMAT_G711_ULAW, AUDIO_FORMAT_PCM16)


def _build_mulaw_decode_table() -> np.ndarray:
    codes = ~np.arange(256, dtype=np.int32) & 0xFF
    sign = codes & 0x80
    exponent = (codes >> 4) & 0x07
    mantissa = codes & 0x0F
    samples = (((mantissa << 3) + MULAW_BIAS) << exponent) - MULAW_BIAS
    return np.where(sign != 0, -samples, samples).astype(np.int16)


MULAW_DECODE_TABLE = _build_mulaw_decode_table()


def mulaw_to_pcm16(data: bytes) -> np.ndarray:
    """Decode mu-law bytes into 16-bit linear samples."""
    return MULAW_DECODE_TABLE[np.frombuffer(data, dtype=np.uint8)]


def pcm16_to_mulaw(samples: np.ndarray) -> bytes:
    """Encode 16-bit linear samples as mu-law bytes."""
    pcm = samples.astype(np.int32)
    sign = np.where(pcm < 0, 0x80, 0)
    magnitude = np.minimum(np.abs(pcm), MULAW_CLIP) + MULAW_BIAS
    exponent = np.clip(np.floor(np.log2(magnitude)).astype(np.int32) - 7, 0, 7)
    mantissa = (magnitude >> (exponent + 3)) & 0x0F
    encoded = ~(sign | (exponent << 4) | mantissa) & 0xFF
    return encoded.astype(np.uint8).tobytes()


def resample(samples: np.ndarray, from_rate: int, to_rate: int) -> np.ndarray:
    """Linearly resample 16-bit samples from one rate to another."""
    if from_rate == to_rate or len(samples) == 0:
        return samples.astype(np.int16)
    out_length = int(round(len(samples) * to_rate / from_rate))
    positions = np.arange(out_length) * (from_rate / to_rate)
    resampled = np.interp(positions, np.arange(len(samples)), samples.astype(np.float64))
    return np.clip(np.round(resampled), -32768, 32767).astype(np.int16)


class AudioCodecAdapter:
    """
    Converts base64 audio payloads between the carrier and provider encodings.

    Args:
        provider_format: ``g711_ulaw`` to pass payloads through, ``pcm16`` to transcode
    """

    def __init__(self, provider_format: str = AUDIO_FORMAT_G711_ULAW):
        if provider_format not in SUPPORTED_PROVIDER_FORMATS:
            raise ValueError(f"Unsupported provider audio format: {provider_format}")
        self.provider_format = provider_format

    @property
    def is_passthrough(self) -> bool:
        return self.provider_format == AUDIO_FORMAT_G711_ULAW

    def carrier_to_provider(self, payload: str) -> str:
        """Convert a Twilio media payload into an input_audio_buffer.append payload."""
        if self.is_passthrough:
            return payload
        samples = mulaw_to_pcm16(base64.b64decode(payload))
        upsampled = resample(samples, CARRIER_SAMPLE_RATE, PROVIDER_PCM16_SAMPLE_RATE)
        return base64.b64encode(upsampled.astype("<i2").tobytes()).decode("utf-8")

    def provider_to_carrier(self, delta: str) -> str:
        """Convert a response.audio.delta payload into a Twilio media payload."""
        if self.is_passthrough:
            return delta
        raw = base64.b64decode(delta)
        if len(raw) % 2:
            logger.debug("Dropping trailing odd byte from pcm16 audio delta")
            raw = raw[:-1]
        samples = np.frombuffer(raw, dtype="<i2")
        downsampled = resample(samples, PROVIDER_PCM16_SAMPLE_RATE, CARRIER_SAMPLE_RATE)
        return base64.b64encode(pcm16_to_mulaw(downsampled)).decode("utf-8")
