"""
Magnetic dipole locator core package.

Estimates the planar position of a magnet from three 3-axis magnetometers
by intersecting Apollonius circles derived from field-magnitude ratios.

Package structure:
- geometry: Points, circles, intersection, triangle containment
- proto: Sensor frame parsing, localization estimate schema
- localization: Baseline calibration, localization engine, smoothing
- io: Serial/replay line sources, shared-memory snapshot channel
- metrics: Diagnostics, counters, histograms
"""

__version__ = "0.1.0"
