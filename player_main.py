"""
Player Service Application Entry Point
======================================

Runs the headless podcast player: starts mpv, serves the ZeroMQ command
socket and publishes player notifications.

Usage: python player_main.py [config.yaml]
"""

from podplayer.app import main


if __name__ == "__main__":
    main()
