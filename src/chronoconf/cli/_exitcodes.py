"""Process exit codes for the chronoconf CLI."""

SUCCESS = 0
GENERAL_ERROR = 1
USAGE_ERROR = 2
DATABASE_ERROR = 3
SCHEMA_ERROR = 4
INVALID_KEY = 5
