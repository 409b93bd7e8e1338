import os

from app.expedientes.config_validation import validate_runtime_config
from app.expedientes.utils import log_line
from app.main import app

if __name__ == "__main__":
    # Importing app.main creates the data directories. PORT may be set by
    # the hosting environment; default to 8080 for local development.
    validate_runtime_config("ui")
    port = int(os.environ.get("PORT", 8080))
    log_line(f"[UI] Serving on port {port}")
    app.run(host="0.0.0.0", port=port)
