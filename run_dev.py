#!/usr/bin/env python3
"""
Development server script for the event travel planner
Starts the Flask API with the reloader enabled
"""

import os
import sys

def main():
    project_root = os.path.dirname(os.path.abspath(__file__))
    os.chdir(project_root)
    sys.path.insert(0, project_root)

    port = int(os.getenv('PORT', '5001'))
    print("🚀 Starting event travel planner (dev)...")
    print("="*60)
    print(f"📡 API Server will start on: http://localhost:{port}")
    print("="*60)

    from eventtravel.app import app
    try:
        app.run(debug=True, host='0.0.0.0', port=port)
    except KeyboardInterrupt:
        print("\n🛑 API Server stopped")

if __name__ == '__main__':
    main()
