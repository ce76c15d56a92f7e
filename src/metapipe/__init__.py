"""metapipe: stage-checkpointed kneaddata / kraken2 / bracken runs, one sample per array task."""

from metapipe.__version__ import __version__

__all__ = ["__version__"]
