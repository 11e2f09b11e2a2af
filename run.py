#!/usr/bin/env python3
"""Zero-G Planner - Run the application.

Usage:
    python run.py
    # Or: zerog

The API will be available at http://localhost:5050/api
"""

from zerog.app import main

if __name__ == "__main__":
    main()
