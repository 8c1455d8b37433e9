"""Run the AgriMarket Flask application."""
import os
from agrimarket import create_app

app = create_app(os.environ.get('APP_CONFIG', 'default'))

if __name__ == '__main__':
    # Use environment variable for debug mode, default to False for production safety
    debug_mode = os.environ.get('FLASK_DEBUG', 'False').lower() == 'true'
    app.run(debug=debug_mode, host='0.0.0.0', port=int(os.environ.get('PORT', '5000')))
