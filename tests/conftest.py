"""
Test configuration shared by all roundvote suites
"""
import os
import sys
from pathlib import Path

from hypothesis import HealthCheck, settings

# Run against the source tree without requiring an install
project_root = Path(__file__).parent.parent
src_path = project_root / "src"

sys.path.insert(0, str(src_path))

settings.register_profile("ci", max_examples=200, deadline=None)
settings.register_profile(
    "dev",
    max_examples=50,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
)
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "dev"))
