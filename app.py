"""
=============================================================================
FOCUSFLOW MONITOR — APPLICATION ENTRY POINT (app.py)
=============================================================================

WHAT THIS FILE DOES (in plain language):
----------------------------------------
This is the "front door" of the server. When you run "python app.py", a web
server starts that the dashboard talks to. The server:

  1. Starts and stops focus sessions (camera + microphone monitoring).
  2. Serves live metrics (polling or a Server-Sent Events stream) while a
     session runs: looks, blinks, brow furrows, fidgets, impacts, voice time,
     noise, brightness, head tilt and device load.
  3. After a session, returns the full snapshot history and an AI-written
     report produced by Azure AI Foundry.

The actual URL handlers live in routes.py; the detection loop lives in
focus_session_monitor.py.

HOW TO RUN:
-----------
  - From project root:  python app.py
  - By default the app is at:  http://localhost:5000

CONFIGURATION:
--------------
  - Settings (API keys, thresholds, ports) come from the .env file and config.py.
  - Never put real API keys in the code; use environment variables.
=============================================================================
"""

# ---------------------------------------------------------------------------
# Step 1: Load environment variables from .env (before anything else)
# ---------------------------------------------------------------------------
# config.py reads os.environ at import time, so .env must be loaded first.
import logging
from pathlib import Path
from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parent / ".env")

# ---------------------------------------------------------------------------
# Step 2: Import the web framework and our own modules
# ---------------------------------------------------------------------------
from flask import Flask
from flask_cors import CORS
from flask_compress import Compress

from routes import register_routes
import config

# ---------------------------------------------------------------------------
# Step 3: Warn the user if important settings are missing
# ---------------------------------------------------------------------------
# Prints e.g. "AZURE_FOUNDRY_KEY is not set" so you know what to add to .env.
config.warn_missing_config()


def create_app() -> Flask:
    """
    Create and configure the Flask application (the web server).

    What it does:
      - Creates a new Flask "app" object.
      - Enables CORS so the dashboard can call the API from another origin.
      - Enables compression for the larger payloads (state, history).
      - Registers all URL routes via register_routes(app).

    Returns:
        The configured Flask application.
    """
    app = Flask(__name__)

    # Allow the browser to call our API from another origin (e.g. a dev server on another port).
    # In production you would restrict this to specific domains.
    CORS(app, resources={r"/*": {"origins": "*"}})

    # Compress responses (gzip) when the client supports it.
    Compress(app)

    register_routes(app)

    return app


# ---------------------------------------------------------------------------
# Create the one global Flask application
# ---------------------------------------------------------------------------
app = create_app()


# ---------------------------------------------------------------------------
# Run the server when this file is executed directly (e.g. "python app.py")
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    # FLASK_DEBUG=true: Flask's development server (auto-reload, debugger).
    # Otherwise: Waitress with 6 threads, so the detection loop, polling and
    # the live stream can be served at the same time.
    logging.basicConfig(
        level=logging.DEBUG if config.FLASK_DEBUG else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if config.FLASK_DEBUG:
        app.run(
            host=config.FLASK_HOST,
            port=config.FLASK_PORT,
            debug=True,
            use_reloader=False,
        )
    else:
        import waitress
        waitress.serve(app, host=config.FLASK_HOST, port=config.FLASK_PORT, threads=6)
