"""
Dusty

Desktop notification daemon implementing org.freedesktop.Notifications.
Tracks notification lifecycle, timeouts, do-not-disturb and user rules.
"""

__version__ = "0.2.0"
__author__ = "fullzer4"
