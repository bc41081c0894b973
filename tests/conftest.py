import os

# Rich wraps console output at the detected terminal width; keep long tmp paths
# on one line so CLI output assertions are independent of the test environment.
os.environ.setdefault("COLUMNS", "200")
