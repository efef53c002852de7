"""
Puts the repository root on the search path so this Pulumi project can
import the shared `modules`, `utils` and `configs` packages.

CI installs the repository (`pip install -e .`) and sets `CI=true`, which
makes this a no-op.
"""

from pathlib import Path
import sys
import os

if os.environ.get("CI") != "true":
    path_root = Path(__file__).parents[1]
    if str(path_root) not in sys.path:
        sys.path.append(str(path_root))
