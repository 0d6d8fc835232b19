#!/usr/bin/env python3
"""Convenience runner for the territory route replay tool.

Usage:
    python run.py --input route.gpx --activity running
"""
import logging
from territory_capture.tools.replay_route import main

if __name__ == "__main__":
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(level=logging.INFO, format="[%(asctime)s] %(levelname)s %(name)s: %(message)s")
    main()
