"""
mypail: Emotion engine for an AI companion chat backend

This package keeps a per-session mood for a chat companion and lets that mood
shape its replies. Device telemetry and message triggers feed a smoothed
0-100 mood signal, which is cut into four bands by per-session thresholds.

Architecture layers (bottom to top):
    1. Affect (mood record, thresholds, smoothing)
    2. Memory (persisted persona records)
    3. Registry (bounded in-memory session cache)
    4. Classifier + responses (keyword triggers, canned lines)
    5. Text generator (language-model fallback)
    6. Orchestrator (one chat turn)
    7. Gateway + CLI (HTTP and command-line surfaces)
"""

__version__ = "0.1.0"
