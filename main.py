#!/usr/bin/env python3
"""
lightbridge - one control surface for local-network bulbs and bridge lights

Discovers devices, then reads or sets toggle, brightness, colour, mode,
warmth, scenes and timers uniformly across vendors.
"""

from lightbridge.main import run

if __name__ == "__main__":
    run()
