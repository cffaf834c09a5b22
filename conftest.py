"""
Global pytest configuration
"""
import sys
import os

# Project root on the PYTHONPATH before test collection imports anything
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, PROJECT_ROOT)

os.environ.setdefault('ENV', 'test')
