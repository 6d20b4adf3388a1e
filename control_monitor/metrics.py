from prometheus_client import Counter, Enum, Gauge

COMMANDS_TOTAL = Counter(
    'control_commands_total',
    'Total number of operator commands applied',
    ['command']
)

COMMANDS_IGNORED_TOTAL = Counter(
    'control_commands_ignored_total',
    'Total number of operator commands ignored for the current mode',
    ['command']
)

SIMULATOR_TICKS_TOTAL = Counter(
    'simulator_ticks_total',
    'Total number of applied sensor simulator ticks'
)

SIMULATOR_TICKS_SKIPPED_TOTAL = Counter(
    'simulator_ticks_skipped_total',
    'Total number of simulator ticks skipped on lock contention'
)

SYSTEM_MODE = Enum(
    'system_mode_enum',
    'Current operational mode',
    states=['NORMAL', 'EMERGENCY_SHUTDOWN', 'INCOMPATIBLE']
)

DIAGNOSTIC_IN_PROGRESS = Gauge(
    'diagnostic_in_progress',
    'Whether a diagnostic run is settling (1) or idle (0)'
)
