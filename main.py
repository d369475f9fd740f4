#!/usr/bin/env python3
"""
Delivery Optimizer - Main Entry Point
Plan optimized, adaptive delivery for CDN-hosted video assets

Examples:
  python main.py optimize https://videodelivery.net/abc123 --width 1280 --height 720 -q medium
  python main.py manifest https://stream.mux.com/xyz
"""

from vidopt.cli import main

if __name__ == '__main__':
    main()
