"""Static game data: task catalog, station parameter ranges, events and effects."""

TIMER_DEFAULT = 108
TIMER_CRITICAL_WINDOW = 4
SECRET_CODE = "4 8 15 16 23 42"

EMERGENCY = 'EMERGENCY'
CRITICAL = 'CRITICAL'
MAINTENANCE = 'MAINTENANCE'
TASK_CATEGORIES = (EMERGENCY, CRITICAL, MAINTENANCE)

# Default category weights used by the generator (percent).
DEFAULT_CATEGORY_WEIGHTS = {EMERGENCY: 20, CRITICAL: 40, MAINTENANCE: 40}

TASK_CATALOG = {
    EMERGENCY: {
        'REACTOR_CRITICAL': {
            'name': 'REACTOR CRITICAL',
            'difficulty': 10,
            'timeLimit': 300000,
            'description': 'Reactor core temperature critical. Immediate action required.',
            'targets': {'temperature': 22.0, 'radiationLevel': 0.05},
        },
        'COOLANT_LEAK': {
            'name': 'COOLANT LEAK',
            'difficulty': 8,
            'timeLimit': 240000,
            'description': 'Coolant system breach detected. Containment required.',
            'targets': {'temperature': 22.0, 'pressure': 1013.0},
        },
        'POWER_GRID_FAILURE': {
            'name': 'POWER GRID FAILURE',
            'difficulty': 9,
            'timeLimit': 180000,
            'description': 'Primary power grid offline. Emergency systems activated.',
            'targets': {'powerLevel': 90.0},
        },
    },
    CRITICAL: {
        'PRESSURE_REGULATION': {
            'name': 'PRESSURE REGULATION',
            'difficulty': 6,
            'timeLimit': 300000,
            'description': 'Chamber pressure unstable. Manual regulation needed.',
            'targets': {'pressure': 1013.0},
        },
        'TEMPERATURE_CONTROL': {
            'name': 'TEMPERATURE CONTROL',
            'difficulty': 5,
            'timeLimit': 240000,
            'description': 'Temperature fluctuations detected. Stabilization required.',
            'targets': {'temperature': 21.0},
        },
        'FLOW_RATE_ADJUSTMENT': {
            'name': 'FLOW RATE ADJUSTMENT',
            'difficulty': 4,
            'timeLimit': 180000,
            'description': 'Flow rate outside parameters. Adjustment needed.',
            'targets': {'humidity': 45.0},
        },
    },
    MAINTENANCE: {
        'SYSTEM_CALIBRATION': {
            'name': 'SYSTEM CALIBRATION',
            'difficulty': 3,
            'timeLimit': 300000,
            'description': 'System calibration required. Precision adjustment needed.',
            'targets': {'powerLevel': 85.0},
        },
        'FILTER_REPLACEMENT': {
            'name': 'FILTER REPLACEMENT',
            'difficulty': 2,
            'timeLimit': 240000,
            'description': 'Filter efficiency degraded. Replacement required.',
            'targets': {'oxygenLevel': 95.0},
        },
        'ROUTINE_CHECK': {
            'name': 'ROUTINE CHECK',
            'difficulty': 1,
            'timeLimit': 180000,
            'description': 'Routine system check. Verification required.',
            'targets': {},
        },
    },
}


def describe_task(name):
    for entries in TASK_CATALOG.values():
        for entry in entries.values():
            if entry['name'] == name:
                return entry['description']
    return 'Task description not available'


PARAMETER_FIELDS = (
    'powerLevel',
    'oxygenLevel',
    'temperature',
    'radiationLevel',
    'pressure',
    'humidity',
)

PARAMETER_RANGES = {
    'powerLevel': (0.0, 100.0),
    'oxygenLevel': (0.0, 100.0),
    'temperature': (-50.0, 100.0),
    'radiationLevel': (0.0, 1.0),
    'pressure': (800.0, 1200.0),
    'humidity': (0.0, 100.0),
}

DEFAULT_PARAMETERS = {
    'powerLevel': 85.0,
    'oxygenLevel': 95.0,
    'temperature': 21.0,
    'radiationLevel': 0.05,
    'pressure': 1013.0,
    'humidity': 45.0,
}

# Bands that earn the balance bonus.
OPTIMAL_BANDS = {
    'powerLevel': (70.0, 100.0),
    'oxygenLevel': (90.0, 100.0),
    'temperature': (18.0, 26.0),
    'radiationLevel': (0.0, 0.1),
    'pressure': (980.0, 1040.0),
    'humidity': (30.0, 60.0),
}

# Leaving these raises a parameter alert.
SAFE_BANDS = {
    'powerLevel': (30.0, 100.0),
    'oxygenLevel': (70.0, 100.0),
    'temperature': (5.0, 40.0),
    'radiationLevel': (0.0, 0.5),
    'pressure': (900.0, 1100.0),
    'humidity': (15.0, 85.0),
}

# How close the station value must be to a task target to help the operator.
TARGET_TOLERANCES = {
    'powerLevel': 10.0,
    'oxygenLevel': 5.0,
    'temperature': 3.0,
    'radiationLevel': 0.05,
    'pressure': 15.0,
    'humidity': 8.0,
}

# Maximum drift per tick, per field.
VOLATILITY = {
    'powerLevel': 1.5,
    'oxygenLevel': 0.8,
    'temperature': 0.6,
    'radiationLevel': 0.01,
    'pressure': 4.0,
    'humidity': 1.2,
}

# source -> {target: factor}; delta = factor * 1% of the source value
INTERDEPENDENCIES = {
    'powerLevel': {'oxygenLevel': 0.1, 'temperature': 0.05, 'pressure': 0.02},
    'oxygenLevel': {'temperature': -0.04, 'pressure': 0.03},
    'temperature': {'humidity': -0.05, 'pressure': 0.05},
    'radiationLevel': {'powerLevel': -2.0},
    'pressure': {'oxygenLevel': -0.001},
    'humidity': {'temperature': -0.02},
}

RANDOM_EVENTS = {
    'SOLAR FLARE': {
        'description': 'Solar flare detected. Radiation shielding under load.',
        'effects': {'radiationLevel': 0.3, 'powerLevel': -10.0},
    },
    'MICROMETEORITE IMPACT': {
        'description': 'Hull impact detected. Pressure dropping.',
        'effects': {'pressure': -60.0, 'oxygenLevel': -8.0},
    },
    'POWER SURGE': {
        'description': 'Power surge on the main bus.',
        'effects': {'powerLevel': 15.0, 'temperature': 6.0},
    },
    'COOLANT FAILURE': {
        'description': 'Coolant loop pressure lost.',
        'effects': {'temperature': 15.0, 'humidity': -10.0},
    },
    'SCRUBBER FAULT': {
        'description': 'Oxygen scrubber fault. Air quality degrading.',
        'effects': {'oxygenLevel': -12.0, 'humidity': 8.0},
    },
    'ELECTROMAGNETIC ANOMALY': {
        'description': 'Electromagnetic anomaly detected near the station.',
        'effects': {'powerLevel': -20.0, 'radiationLevel': 0.1},
    },
}

TASK_EFFECTS = {
    'REACTOR CRITICAL': {
        'success': {'temperature': -10.0, 'radiationLevel': -0.1, 'powerLevel': 5.0},
        'failure': {'temperature': 12.0, 'radiationLevel': 0.2, 'powerLevel': -15.0},
    },
    'COOLANT LEAK': {
        'success': {'temperature': -8.0, 'pressure': 20.0},
        'failure': {'temperature': 10.0, 'pressure': -40.0, 'humidity': 10.0},
    },
    'POWER GRID FAILURE': {
        'success': {'powerLevel': 20.0},
        'failure': {'powerLevel': -25.0, 'oxygenLevel': -5.0},
    },
    'PRESSURE REGULATION': {
        'success': {'pressure': 25.0},
        'failure': {'pressure': -30.0},
    },
    'TEMPERATURE CONTROL': {
        'success': {'temperature': -5.0},
        'failure': {'temperature': 6.0},
    },
    'FLOW RATE ADJUSTMENT': {
        'success': {'humidity': -5.0, 'oxygenLevel': 2.0},
        'failure': {'humidity': 8.0},
    },
    'SYSTEM CALIBRATION': {
        'success': {'powerLevel': 5.0},
        'failure': {'powerLevel': -5.0},
    },
    'FILTER REPLACEMENT': {
        'success': {'oxygenLevel': 5.0, 'humidity': -3.0},
        'failure': {'oxygenLevel': -4.0},
    },
    'ROUTINE CHECK': {
        'success': {'powerLevel': 1.0, 'oxygenLevel': 1.0},
        'failure': {'powerLevel': -1.0},
    },
}

CATEGORY_EFFECTS = {
    EMERGENCY: {'success': {'powerLevel': 5.0}, 'failure': {'powerLevel': -10.0, 'oxygenLevel': -5.0}},
    CRITICAL: {'success': {'powerLevel': 2.0}, 'failure': {'powerLevel': -5.0}},
    MAINTENANCE: {'success': {'oxygenLevel': 1.0}, 'failure': {'oxygenLevel': -1.0}},
}

# Operator-vs-operator challenges.
CHALLENGE_TYPES = {
    'standard': {
        'name': 'Standard Challenge',
        'reputationCost': 1,
        'pointsReward': 10,
        'baseSuccess': 0.5,
        'description': 'A standard operator challenge',
    },
    'advanced': {
        'name': 'Advanced Challenge',
        'reputationCost': 3,
        'pointsReward': 25,
        'baseSuccess': 0.4,
        'description': 'An advanced operator challenge',
    },
    'elite': {
        'name': 'Elite Challenge',
        'reputationCost': 5,
        'pointsReward': 50,
        'baseSuccess': 0.3,
        'description': 'An elite operator challenge',
    },
}

STARTING_REPUTATION = 10
MAX_REPUTATION = 100
REPUTATION_GAIN = 2
REPUTATION_LOSS = 1
CHALLENGE_MIN_POINTS = 5
CHALLENGE_WINDOW_MS = 300000
CHALLENGE_COOLDOWN_MS = 300000
