"""
Main entry point for the party games server.

Usage:
    python -m server.main

Or:
    python server/main.py
"""

from server.network.server import main


if __name__ == "__main__":
    main()
