#!/usr/bin/env python3
"""
Simple server startup script.

    python run_server.py --model models/model_js/model.json --port 3000
"""
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from defect_inference.scripts.start_server import main

if __name__ == "__main__":
    main()
