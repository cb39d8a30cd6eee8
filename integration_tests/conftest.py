"""Pytest configuration for integration tests.

Integration tests interact with real external services (Mux, MongoDB)
and require actual credentials to run. They are excluded from the default
test run:

    pytest integration_tests -v
"""

import os
import warnings

# Ignore warnings from third-party SDKs
warnings.filterwarnings("ignore", category=DeprecationWarning, module="mux_python.*")

os.environ.setdefault("DEBUG", "false")
