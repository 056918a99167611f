"""Run the service with ``python -m streamhooks``."""

from streamhooks.lifecycle.runner import run

if __name__ == "__main__":
    run()
