"""Allow running as `python -m sim_relay`."""

from sim_relay.cli import app

if __name__ == "__main__":
    app()
