"""
                Split Bill Settlement Engine

Tracks how a restaurant table session's bill is paid off through
partial payments, item-based splits and cover charges, keeping a
consistent remaining amount and fiscal (SMAC) status across terminals.

Author: Khalil Bannouri
Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
__author__ = "Khalil_Bannouri"
