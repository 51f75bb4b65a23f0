"""
Process entry point, used by the Procfile as ``scaler: python run_scaler.py``.
"""
import sys

# Configure logging first
from dynoscaler.common.logger import setup_logging

setup_logging()

from dynoscaler.main import run


if __name__ == '__main__':
    sys.exit(run())
