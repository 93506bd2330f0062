"""Constants shared between the interceptor and session variable stores.

Centralized so the store that seeds session internals and the interceptor
that reads them agree on names.
"""

# Host's last-success indicator (the analog of a shell's ``$?``)
SUCCESS_VARIABLE = "_success"

# Host's error log, newest error first
ERROR_LOG_VARIABLE = "_errors"

# Bound parameter naming the variable a command's output is also written to
OUT_VARIABLE_PARAMETER = "out_variable"

# Session internals seeded by the variable store
SESSION_INTERNALS = {
    SUCCESS_VARIABLE,
    ERROR_LOG_VARIABLE,
}

# Default bound on the error log kept by NamespaceVariableStore
DEFAULT_MAXIMUM_ERROR_COUNT = 256
