"""AumOS compliance learning: profiling, regulatory monitoring, control generation,
scheduled assessment and feedback learning."""

__version__ = "0.1.0"
