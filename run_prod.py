#!/usr/bin/env python3
"""
Production runner for the event travel planner
- Serves the Flask API (eventtravel.app) behind waitress
- Loads .env for GOOGLE_MAPS_API_KEY and other settings

Usage:
  python3 run_prod.py

Environment:
  PORT=8000 (default)              # Port to bind
  HOST=0.0.0.0 (default)           # Host interface
  GOOGLE_MAPS_API_KEY=...          # Required for routing endpoints
  SCHEDULE_CACHE_TTL_MINUTES=30    # optional: schedule freshness window
  MEETUP_PLACEMENT=centroid        # optional: meetup placement strategy
  SEED_DATA_FILE=seed.json         # optional: users/events to preload
"""

import os
import sys
from pathlib import Path
from dotenv import load_dotenv

from werkzeug.middleware.proxy_fix import ProxyFix

# Ensure project root is on sys.path
PROJECT_ROOT = Path(__file__).resolve().parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Load env from .env if present
load_dotenv(dotenv_path=PROJECT_ROOT / '.env')

from eventtravel.app import app as api_app  # noqa: E402

# Respect reverse proxy headers (X-Forwarded-*) when behind a proxy/HTTPS terminator
if os.getenv('TRUST_PROXY_HEADERS', '1') not in ('0', 'false', 'False', 'no', 'off'):
    # Trust a single proxy hop by default; tune via env
    x_for = int(os.getenv('PROXY_FIX_X_FOR', '1'))
    x_proto = int(os.getenv('PROXY_FIX_X_PROTO', '1'))
    x_host = int(os.getenv('PROXY_FIX_X_HOST', '1'))
    api_app.wsgi_app = ProxyFix(api_app.wsgi_app, x_for=x_for, x_proto=x_proto, x_host=x_host)
application = api_app


def main():
    host = os.getenv('HOST', '0.0.0.0')
    try:
        port = int(os.getenv('PORT', '8000'))
    except ValueError:
        port = 8000

    api_key = os.getenv('GOOGLE_MAPS_API_KEY')
    if not api_key or api_key == 'your_api_key_here':
        print("\n" + "="*60)
        print("Warning: GOOGLE_MAPS_API_KEY is not configured.")
        print("Schedule and meetup endpoints will answer with an error.")
        print("Set it in your environment or .env file.")
        print("="*60 + "\n")

    print(f"\n🚀 Starting event travel planner (prod) on http://{host}:{port}")
    from waitress import serve
    serve(application, host=host, port=port, threads=int(os.getenv('WSGI_THREADS', '8')))


if __name__ == '__main__':
    main()
