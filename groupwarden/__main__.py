import os

from dotenv import load_dotenv

from groupwarden.cli.commands import app

# Load .env file from ~/.groupwarden/ if it exists
# Precedence: existing env vars > .env file (override=False)
load_dotenv(os.path.expanduser("~/.groupwarden/.env"), override=False)

if __name__ == "__main__":
    app()
