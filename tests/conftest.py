import os
import warnings

# Ignore warnings from third-party SDKs
warnings.filterwarnings("ignore", category=DeprecationWarning, module="mux_python.*")

# Set test environment variables before any app module reads configuration
os.environ.update(
    {
        "DEBUG": "false",
        "LIVEKIT_URL": "wss://livekit.test",
        "LIVEKIT_API_KEY": "lk_key",
        "LIVEKIT_API_SECRET": "lk_secret",
        "MUX_WEBHOOK_SIGNING_SECRET": "whsec_test",
        "FRONTEND_BASE_URL": "https://live.example.com",
        "DEFAULT_MAX_HOSTS": "4",
        "INVITE_DEFAULT_EXPIRES_IN_HOURS": "24",
    }
)

from tests.fixtures.stream_fixtures import *  # noqa: E402, F403
from tests.fixtures.api_fixtures import *  # noqa: E402, F403
