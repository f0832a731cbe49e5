import os
import shlex
import sys

APP_NAME = os.environ.get("APP_NAME", "Extended Mix")

MEDIA_DIR = os.environ.get("MEDIA_DIR", "./media")
UPLOAD_DIR = os.environ.get("UPLOAD_DIR", os.path.join(MEDIA_DIR, "uploads"))
RESULT_DIR = os.environ.get("RESULT_DIR", os.path.join(MEDIA_DIR, "results"))
DB_PATH = os.environ.get("DB_PATH", "./data/remixer.db")

DEMO_USERNAME = os.environ.get("DEMO_USERNAME", "demo")

# Command prefixes; the job appends its positional arguments.
ANALYZE_CMD = shlex.split(os.environ.get("ANALYZE_CMD", "")) or [sys.executable, "-m", "remixer.analysis"]
EXTEND_CMD = shlex.split(os.environ.get("EXTEND_CMD", "audio-extend"))
TOOL_TIMEOUT_S = float(os.environ.get("TOOL_TIMEOUT_S", "600"))

SERVER_HOSTNAME = os.environ.get("SERVER_HOSTNAME", "")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

MAX_UPLOAD_BYTES = 15 * 1024 * 1024  # 15MB
MAX_VERSION_COUNT = 3

ALLOWED_EXTENSIONS = {".mp3", ".wav", ".flac", ".aiff"}
ALLOWED_MIME_TYPES = {"audio/mpeg", "audio/wav", "audio/flac", "audio/aiff", "audio/x-aiff"}
