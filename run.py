"""
Entry point for Flask.

Usage (from project root):

    # On Linux/macOS:
    export FLASK_APP=run.py
    flask --app run.py --debug run

Maintenance commands:

    flask --app run.py seed-demo
    flask --app run.py send-weekly-summary
    flask --app run.py purge-expired-tokens

"""

from premium_freight import create_app

# WSGI application object for Flask to run. When you run `flask run`, Flask looks for this `app` variable.
app = create_app()

if __name__ == "__main__":
    # For direct `python run.py` usage (dev only) - use `flask run` or a WSGI server instead.
    app.run(debug=True)
