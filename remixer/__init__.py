"""Upload audio, render extended intro/outro versions, and stream them back."""

__version__ = "0.1.0"
