"""External tool wrappers (metapipe).

This package provides Python wrappers for the command-line tools a sample
run depends on:
- Kneaddata: host decontamination and read QC
- Kraken2: taxonomic classification
- Bracken: abundance re-estimation
- Pigz: parallel (de)compression
- Qstat: scheduler accounting snapshot
- RelaySsh: remote transfer trigger
"""

from metapipe.external.base import ExternalTool
from metapipe.external.kneaddata import Kneaddata
from metapipe.external.kraken2 import Kraken2
from metapipe.external.bracken import Bracken
from metapipe.external.pigz import Pigz
from metapipe.external.qstat import Qstat
from metapipe.external.ssh import RelaySsh

__all__ = [
    "ExternalTool",
    "Kneaddata",
    "Kraken2",
    "Bracken",
    "Pigz",
    "Qstat",
    "RelaySsh",
]
