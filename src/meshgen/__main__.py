# File Chain (see DEVELOPER.md):
# Doc Version: v1.0.0
#
# - Called by: Python interpreter when running `python -m meshgen`
# - Reads from: None (entry point only)
# - Writes to: None (calls main() and exits with its return code)
# - Calls into: src/meshgen/main.main()
"""Allow running the package with python -m meshgen (same as the meshgen console script)."""
from meshgen.main import main
import sys
sys.exit(main())
