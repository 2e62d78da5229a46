"""
Classification of Docker build stream lines into build stages.

Pure functions, no knowledge of streaming or of the runtime protocol.
"""
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

BUILDING_FROM = "building_from"
BUILDING_MAINTAINER = "building_maintainer"
BUILDING_RUN = "building_run"
BUILDING_CMD = "building_cmd"
BUILDING_COMPLETE = "building_complete"

# Evaluated in order, first match wins
STAGE_PATTERNS: List[Tuple[str, re.Pattern]] = [
    (BUILDING_FROM, re.compile(r"FROM (?P<FROM>.*)")),
    (BUILDING_MAINTAINER, re.compile(r"MAINTAINER (?P<MAINTAINER>.*)")),
    (BUILDING_RUN, re.compile(r"RUN (.*)")),
    (BUILDING_CMD, re.compile(r"CMD (.*)")),
    (BUILDING_COMPLETE, re.compile(r"Successfully built (?P<IMAGE_ID>.*)")),
]


@dataclass
class StageEvent:
    """A build stream line recognised as a build stage."""

    type: str
    command: str
    value: Optional[str]
    input: str
    captures: Dict[str, str] = field(default_factory=dict)


def classify(line) -> Optional[StageEvent]:
    """
    Classify one build stream line.

    Args:
        line: Raw ``stream`` text of a build message

    Returns:
        StageEvent for a recognised stage, None otherwise
    """
    if not isinstance(line, str) or not line:
        return None

    for stage_type, pattern in STAGE_PATTERNS:
        match = pattern.search(line)
        if match:
            value = match.group(1)
            return StageEvent(
                type=stage_type,
                command=match.group(0),
                value=value.strip() if value is not None else None,
                input=line,
                captures={
                    name: captured.strip()
                    for name, captured in match.groupdict().items()
                    if captured
                },
            )
    return None
