"""
Static camera observing a target on a two-axis positioner.
"""

from .utils.positioner_tools import (
    TwoAxisPositionerCalibration,
    create_two_axis_positioner,
    freeze_target_chain,
    generate_sample_measurements,
)

__all__ = [
    'TwoAxisPositionerCalibration',
    'create_two_axis_positioner',
    'freeze_target_chain',
    'generate_sample_measurements',
]
