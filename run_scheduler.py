"""
Run the recurring obligation job once, for a system crontab:

    0 9 * * *  cd /srv/fintrack && python run_scheduler.py

Exits non-zero when the run failed (for example because another run holds the lock).
"""
import logging
import sys

from app import app
from services.triggers import ManualTrigger

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def main():
    result = ManualTrigger(app).fire()
    print(result.message)
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
