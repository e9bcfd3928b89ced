"""
kincalib: dual kinematic chain calibration.

Estimates the camera mount, target mount and base transforms of a
camera/target work cell together with DH parameter corrections of the
kinematic chains carrying them.

Available modules:
- shared: Calibration engine and utilities
- two_axis_positioner: Static camera observing a target on a two-axis
  positioner
"""

from .shared import __version__

__all__ = ['__version__']
