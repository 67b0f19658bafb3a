import sys
from pathlib import Path

# Make `hubproxy` and `tests.common` importable without an installed package.
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))
