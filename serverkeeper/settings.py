"""
This module contains the default configuration settings for ServerKeeper.
It defines paths, supervisor settings, firewall backend settings and logging
options. Values are read from the environment after `.env` has been loaded.
"""

import os
import pathlib
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv(override=True)

#* --- Core Paths ---
BASE_DIR = pathlib.Path(__file__).resolve().parent.parent  # Project Root
BIN_DIR = BASE_DIR / "bin"
OVERRIDES_JSON_PATH = BIN_DIR / "overrides.json"

#* --- Game Server Settings ---
DEFAULT_EXE_NAME = os.getenv("SERVERKEEPER_EXE_NAME", "7DaysToDieServer.exe")
TASKKILL_TIMEOUT = 30  # seconds

#* --- Firewall Backend Settings ---
POWERSHELL_EXECUTABLE = os.getenv("SERVERKEEPER_POWERSHELL", "powershell")
FIREWALL_COMMAND_TIMEOUT = int(os.getenv("SERVERKEEPER_FIREWALL_TIMEOUT", "60"))  # seconds

#* --- Logging ---
# Grafana Loki (for observability)
LOKI_ENABLED = os.getenv("LOKI_ENABLED", "False").lower() in ('true', '1', 't')
LOKI_URL = os.getenv("LOKI_URL", "http://localhost:3100")
LOKI_ORG_ID = os.getenv("LOKI_ORG_ID", "fake")
LOG_BUFFER_FLUSH_INTERVAL = 10

#* --- MODIFIABLE SETTINGS (Overridable from overrides.json) ---
MODIFIABLE_SETTINGS = {
    "DEFAULT_EXE_NAME", "TASKKILL_TIMEOUT",
    "FIREWALL_COMMAND_TIMEOUT",
    "LOKI_ENABLED", "LOKI_URL", "LOKI_ORG_ID", "LOG_BUFFER_FLUSH_INTERVAL",
}
