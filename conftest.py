"""Global pytest configuration."""

import os

# The maps provider refuses to start without a key; every test mocks its transport
os.environ.setdefault("AZURE_MAPS_SUBSCRIPTION_KEY", "test-subscription-key")
