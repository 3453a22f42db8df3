"""
Protocol Module: Message schemas.

- Sensor frames coming from the data collector (text lines)
- Localization estimates produced per frame
"""

from .frame import (
    AXIS_COUNT,
    SATURATION_LIMIT,
    FrameSample,
    FrameParseError,
    MalformedFrameError,
    SaturatedFrameError,
    parse_frame,
    read_frame,
)
from .estimate import (
    Estimate,
    EstimateStatus,
    create_rejected,
)

__all__ = [
    'AXIS_COUNT',
    'SATURATION_LIMIT',
    'FrameSample',
    'FrameParseError',
    'MalformedFrameError',
    'SaturatedFrameError',
    'parse_frame',
    'read_frame',
    'Estimate',
    'EstimateStatus',
    'create_rejected',
]
