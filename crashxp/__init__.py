"""
CrashXP – single-player crash game with an XP reward economy.
"""

__version__ = "1.0.0"
