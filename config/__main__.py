"""Command line interface for testing configuration loading"""
from pathlib import Path

from . import load_config

def main():
    """Display loaded configuration"""
    settings = load_config()

    print("\nSettings Configuration:")
    print("-" * 50)
    for key, value in settings.items():
        print(f"{key}: {value}")

    # Save example configuration file
    examples_dir = Path("examples")
    examples_dir.mkdir(exist_ok=True)

    with open(examples_dir / "settings.conf.example", "w") as f:
        f.write("""[DEFAULT]
# PostgreSQL connection URL (overridden by DATABASE_URL)
db_url = postgresql://postgres@localhost:5432/vouchers
host = 0.0.0.0
port = 5000
# Seconds allowed for a single store call
store_timeout = 5
# Redemption token entropy in bytes (minimum 16)
token_bytes = 32
# postgres or memory
storage_backend = postgres
pool_min_size = 2
pool_max_size = 20
log_level = INFO
""")

if __name__ == "__main__":
    main()
