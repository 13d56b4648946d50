"""Local development entry point.

Usage:
    python run.py

Production runs the app under a WSGI server (`storefront:create_app()`);
this file is only for a local debug server.
"""

from dotenv import load_dotenv

load_dotenv()  # config classes read the environment at import time

from storefront import create_app

app = create_app()

if __name__ == "__main__":
    app.run(
        host=app.config["RUN_HOST"],
        port=app.config["RUN_PORT"],
        debug=app.debug,
    )
