import os
from dotenv import load_dotenv
from medwell import create_app

load_dotenv()

config_name = os.getenv('FLASK_ENV', 'development')

app = create_app(config_name)

if __name__ == "__main__":
    host = os.getenv('HOST', '0.0.0.0')
    port = int(os.getenv('PORT', 5000))
    debug = os.getenv('FLASK_DEBUG', str(config_name == 'development')).lower() in ('true', '1', 't')

    app.run(host=host, port=port, debug=debug)
