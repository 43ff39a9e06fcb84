"""
This module contains the default configuration settings for Keeper.
It defines paths, supervisor timings, exit codes and logging options.
Values can be overridden through environment variables or a `.env` file.
"""

import os
import pathlib
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv(override=False)

#* --- Core Paths ---
BASE_DIR = pathlib.Path(os.getenv("KEEPER_BASE_DIR", os.getcwd())).resolve()
RUN_DIR = BASE_DIR / "run"

#* --- Application File Paths ---
PID_FILE_PATH = pathlib.Path(os.getenv("KEEPER_PID_FILE", str(RUN_DIR / "keeper.pid")))
OVERRIDES_JSON_PATH = pathlib.Path(os.getenv("KEEPER_OVERRIDES_FILE", str(RUN_DIR / "overrides.json")))

#* --- Process Identity ---
PROCESS_TITLE = os.getenv("KEEPER_PROCESS_TITLE", "Keeper")

#* --- Supervisor Settings ---
SUPERVISOR_SLEEP_INTERVAL = 2    # seconds between idle wake-ups of the dispatch loop
GRACEFUL_SHUTDOWN_TIMEOUT = 10   # seconds before force-killing children
RESTART_WAIT_TIMEOUT = 30        # seconds to wait for a running instance to exit on restart
MAX_RESTART_ATTEMPTS = 5         # respawns allowed per child within the window below
RESTART_WINDOW_SECONDS = 60

#* --- Daemon Settings ---
DAEMON_WORKING_DIR = os.getenv("KEEPER_DAEMON_WORKDIR", "/")
DAEMON_UMASK = 0o022

#* --- Exit Codes ---
# These are a compatibility surface for init scripts. Do not renumber.
EXIT_SINGLETON_CONFLICT = 1
EXIT_RESTART_REJECTED = 2
EXIT_NO_RUNNING_INSTANCE = 4
EXIT_STATUS_NOT_RUNNING = 3   # LSB "program is not running", used by the status command

#* --- Logging ---
LOG_LEVEL = os.getenv("KEEPER_LOG_LEVEL", "INFO").upper()
LOG_FILE_PATH = os.getenv("KEEPER_LOG_FILE", "")
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUP_COUNT = 5
LOG_BUFFER_FLUSH_INTERVAL = 10

# Grafana Loki (for observability)
LOKI_ENABLED = os.getenv("LOKI_ENABLED", "False").lower() in ('true', '1', 't')
LOKI_URL = os.getenv("LOKI_URL", "http://localhost:3100")
LOKI_ORG_ID = os.getenv("LOKI_ORG_ID", "")

#* --- MODIFIABLE SETTINGS (Changeable through the overrides file) ---
MODIFIABLE_SETTINGS = {
    "SUPERVISOR_SLEEP_INTERVAL",
    "GRACEFUL_SHUTDOWN_TIMEOUT",
    "RESTART_WAIT_TIMEOUT",
    "MAX_RESTART_ATTEMPTS",
    "RESTART_WINDOW_SECONDS",
    "LOG_BUFFER_FLUSH_INTERVAL",
}
