"""Procedural background music for the local backend."""

import numpy as np
from pydub import AudioSegment

from narration_producer.constants import MUSIC_LOOP_SECONDS

SAMPLE_RATE = 44100

# Mood keyword → chord (Hz). First match in the description wins.
MOOD_CHORDS = {
    "peaceful": (130.81, 164.81, 196.00),    # C3 E3 G3
    "calm": (130.81, 164.81, 196.00),
    "uplifting": (98.00, 123.47, 146.83),    # G2 B2 D3
    "happy": (98.00, 123.47, 146.83),
    "dark": (110.0, 130.81, 164.81),         # A2 C3 E3
    "tense": (110.0, 130.81, 164.81),
    "mysterious": (146.83, 174.61, 220.00),  # D3 F3 A3
    "sad": (146.83, 174.61, 220.00),
}
DEFAULT_CHORD = (110.0, 130.81, 164.81)


def chord_for(description: str | None) -> tuple[float, ...]:
    text = (description or "").lower()
    for keyword, chord in MOOD_CHORDS.items():
        if keyword in text:
            return chord
    return DEFAULT_CHORD


def generate_procedural_music(
    description: str | None = None,
    duration_seconds: float = MUSIC_LOOP_SECONDS,
) -> AudioSegment:
    """Generate an ambient drone: a mood-picked triad with slow amplitude modulation."""
    t = np.linspace(0, duration_seconds, int(SAMPLE_RATE * duration_seconds), endpoint=False)

    weights = (0.3, 0.25, 0.2)
    combined = sum(np.sin(2 * np.pi * f * t) * w for f, w in zip(chord_for(description), weights))

    # Slow amplitude modulation for movement
    mod = 0.7 + 0.3 * np.sin(2 * np.pi * 0.1 * t)
    combined = combined * mod

    peak = np.max(np.abs(combined)) if len(combined) else 0
    if peak > 0:
        combined = combined / peak * 0.8
    samples = (combined * 32767).astype(np.int16)

    return AudioSegment(
        data=samples.tobytes(),
        sample_width=2,
        frame_rate=SAMPLE_RATE,
        channels=1,
    )
