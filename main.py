"""Reply analytics tool - Entry point."""

from dotenv import load_dotenv

from reply_analytics.cli import app

# Load SUPABASE_URL / SUPABASE_KEY and overrides from .env
load_dotenv()

if __name__ == "__main__":
    app()
