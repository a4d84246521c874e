"""
Pytest configuration file.

Loaded automatically by pytest. It puts the service's root directory on the
Python path so that ``main``, ``excel_generator``, ``config`` and the
``utils`` package import the same way under pytest as under uvicorn.
"""
import os
import sys

# Add the current directory to the Python path
sys.path.insert(0, os.path.abspath(os.path.dirname(__file__)))
