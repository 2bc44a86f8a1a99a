"""
WMR — machine-aware configuration backup and restore engine.

Describe what to capture once. Resolve which variant applies to the
machine you are standing on. Back it up, restore it anywhere.
"""

import os

__version__ = "0.1.0"
__author__ = "Windows Melody Recovery"

WMR_HOME = os.environ.get("WMR_HOME", "~/.wmr")
