"""
VPS Init
--------

Interactive bootstrap utility for fresh Ubuntu 24 VPS hosts. Provides a
Nord-themed menu of idempotent setup tasks: base packages, swapfile, zsh with
Zim and Powerlevel10k, BBR congestion control, UFW firewall, Docker and
timezone.

Requires root privileges.
"""

APP_NAME = "VPS Init"
APP_SUBTITLE = "Ubuntu 24 VPS Bootstrap Utility"
VERSION = "1.0.0"

__version__ = VERSION
