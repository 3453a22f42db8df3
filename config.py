"""
Magnetic dipole locator configuration
"""

import math

# Serial link to the embedded data collector
SERIAL_CONFIG = {
    "port": "/dev/ttyACM0",   # LaunchPad tty
    "baudrate": 115200,
    "timeout": None,          # block on readline
    "encoding": "ascii",
}

# Sensor layout in the plane [cm]
SENSOR_CONFIG = {
    "positions": [
        (-3.0, 0.0),
        (3.0, 0.0),
        (0.0, math.sqrt(6 * 6 - 3 * 3)),
    ],
    # Distances and bearings are reported against this point
    # (circumcenter of the sensor triangle)
    "poi": (0.0, 1.7320508076),
}

# Startup baseline calibration
CALIBRATION_CONFIG = {
    "frames": 25,
    "initial_speed": 0.95,
    "speed_step": 0.01,
    # Slow re-calibration while no source is present, None keeps the
    # baseline frozen after startup
    "idle_speed": None,
}

# Source presence detection
DETECTION_CONFIG = {
    # Every sensor must differ from its baseline by at least this much
    "threshold": 30.0,
}

# Localization engine
LOCALIZATION_CONFIG = {
    "aggregation": "sequential_midpoint",   # or "centroid"
    "min_candidates": None,                 # None: 2 per circle pair
    "min_valid_points": 2,
    "expected_valid_points": 3,
    # Malformed frames abort the producer; False skips them instead
    "abort_on_malformed": True,
}

# Shared-memory snapshot channel
SHARED_CONFIG = {
    "enabled": True,
    "segment_name": "magneto-snapshot",
}

# Producer console output
OUTPUT_CONFIG = {
    "enable_console_print": True,
    "smoothing_length": 30,       # moving average window for dist/angle
    "status_interval_s": 5.0,     # periodic frame statistics
}

# Console consumer
MONITOR_CONFIG = {
    "period_s": 0.1,              # fetch tick
    "mirror_axis": None,          # "x" to flip y for screen coordinates
}

# Logging
LOGGING_CONFIG = {
    "level": "INFO",
    "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
}
