"""The closed set of probe strategies."""

from typing import Dict, List, Type

from cachescanner.probes.base import BaseProbe
from cachescanner.probes.deception import Deception
from cachescanner.probes.key_manipulation import KeyManipulation
from cachescanner.probes.parameter_cloaking import ParameterCloaking
from cachescanner.probes.poisoning import Poisoning
from cachescanner.probes.probing import Probing
from cachescanner.probes.timing import Timing

PROBES: Dict[str, Type[BaseProbe]] = {
    "poisoning": Poisoning,
    "deception": Deception,
    "key_manipulation": KeyManipulation,
    "timing": Timing,
    "probing": Probing,
    "parameter_cloaking": ParameterCloaking,
}


def build_probes(config, collector=None, logger=None) -> List[BaseProbe]:
    """Instantiate the configured probes (all of them when none are named)."""
    names = config.probes or list(PROBES)
    return [PROBES[name](config=config, collector=collector, logger=logger) for name in names]
