"""
Pytest bootstrap for the flat module layout.

The analysis modules live at the repository root next to the scripts, so
put the root on sys.path for any pytest invocation. Plots are rendered
off-screen.
"""
import sys
from pathlib import Path

import matplotlib
matplotlib.use("Agg")

repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))
