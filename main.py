#!/usr/bin/env python3
"""
Main entry point for the event travel planner API
"""

import os

from eventtravel.app import app

if __name__ == '__main__':
    app.run(debug=True, host='0.0.0.0', port=int(os.getenv('PORT', '5001')))
