from pathlib import Path

# Define the project root directory
ROOT_DIR = Path(__file__).parent.parent

# Define paths to other important directories
DATA_DIR = ROOT_DIR / "data"
OUTPUTS_DIR = ROOT_DIR / "outputs"
