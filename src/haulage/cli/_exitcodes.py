"""Process exit codes for the haul CLI."""

OK = 0
GENERAL_ERROR = 1
USAGE_ERROR = 2
ROW_ERRORS = 3
ABORTED = 4
