import sys
import os

# Set up sys.path for module imports
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from crossingController.crossing_controller_run import main


if __name__ == "__main__":
    main()
