import os
import tempfile

# Tool logs go to a throwaway directory instead of ~/.ebox/logs.
os.environ.setdefault("EBOX_LOG_DIR", tempfile.mkdtemp(prefix="ebox-logs-"))
