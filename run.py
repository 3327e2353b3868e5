"""Local development entry point.

Usage:
    python run.py

Loads .env, builds the app and serves it on port 5001. Stripe webhooks
can be forwarded locally with:
    stripe listen --forward-to localhost:5001/stripe/webhooks
"""

from dotenv import load_dotenv

load_dotenv()  # Load .env before anything else

from salonpro import create_app  # noqa: E402

app = create_app()

if __name__ == "__main__":
    # The reloader would start a second email queue in the parent process.
    app.run(debug=True, host="0.0.0.0", port=5001, use_reloader=False)
