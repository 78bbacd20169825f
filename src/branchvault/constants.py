"""Constants shared by the branchvault components."""

from __future__ import annotations

# Target application (Steam app id + store-side names it has been listed under)
DEFAULT_APP_ID = "3164500"
DEFAULT_APP_NAMES = (
    "Schedule I",
    "Schedule One",
)
DEFAULT_EXECUTABLE_NAME = "Schedule I.exe"

# Steam layout
STORE_SUBFOLDER = "steamapps"
COMMON_SUBFOLDER = "common"
LIBRARY_FOLDERS_FILE = "libraryfolders.vdf"
MANIFEST_GLOB = "appmanifest_*.acf"

# Wait-for-switch defaults (seconds)
DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_SWITCH_TIMEOUT = 300.0

# Persisted registry document
REGISTRY_FILENAME = "dev_environment_config.json"
SCHEMA_VERSION = "1.0"

# Lock file placed in the snapshot root while a workflow runs
WORKFLOW_LOCK_NAME = ".branchvault.lock"
