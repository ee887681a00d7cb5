import os

BACKEND_URL = os.getenv("NOTEBOOKFILES_BACKEND_URL", "http://127.0.0.1:1234")
BACKEND_VERSION = os.getenv("NOTEBOOKFILES_BACKEND_VERSION", "v1")
TIMEOUT = float(os.getenv("NOTEBOOKFILES_TIMEOUT", "10"))

# Absolute prefix the notebook server puts in front of workspace paths
ROOT_PREFIX = os.getenv("NOTEBOOKFILES_ROOT_PREFIX", "")
WATCH_DIR = os.getenv("NOTEBOOKFILES_WATCH_DIR") or None

HOST = os.getenv("NOTEBOOKFILES_HOST", "127.0.0.1")
PORT = int(os.getenv("NOTEBOOKFILES_PORT", "8000"))

LOG_LEVEL = os.getenv("NOTEBOOKFILES_LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("NOTEBOOKFILES_LOG_FILE", "notebookfiles.log")

# LC_COLLATE used for tree ordering; "" takes it from the environment
COLLATE_LOCALE = os.getenv("NOTEBOOKFILES_LOCALE", "")
