"""
Root conftest.py: makes the project root importable for the test suite.
"""

import os
import sys

# Ensure project root is in sys.path for imports to work correctly
project_root = os.path.dirname(os.path.abspath(__file__))
if project_root not in sys.path:
    sys.path.insert(0, project_root)
