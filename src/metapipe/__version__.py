"""Version information for metapipe."""

__version__ = "0.3.0"
__author__ = "metapipe developers"
__license__ = "GPL-2.0"
__description__ = "Stage-checkpointed per-sample metagenomics pipeline for batch-scheduled clusters"
