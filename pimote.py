#!/usr/bin/env python3
"""
Pimote - remote relay switch for the Raspberry Pi
"""

import sys
import os

# Add the package to Python path
sys.path.insert(0, os.path.dirname(__file__))

# Import and run the main function from the modular implementation
from pimote.__main__ import main

if __name__ == "__main__":
    sys.exit(main())
