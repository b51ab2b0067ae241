"""
Gunicorn config: bind to 0.0.0.0 and PORT.

With SCHEDULER_ENABLED every worker starts its own time trigger; the per-job
lock lets only one of them run a batch at a time.
"""
import os

bind = "0.0.0.0:{}".format(os.environ.get("PORT", "8080"))
workers = int(os.environ.get("WEB_CONCURRENCY", "1"))
threads = 2
timeout = 120
