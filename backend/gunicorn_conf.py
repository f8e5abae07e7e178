# backend/gunicorn_conf.py

# Gunicorn config file. Start with:
#   gunicorn -c gunicorn_conf.py flowgate.main:app

import os

bind = os.getenv("BIND", "0.0.0.0:8000")
workers = int(os.getenv("WORKERS", "4"))
worker_class = "uvicorn.workers.UvicornWorker"

# The client abandons an exchange after 10 seconds; a worker stuck longer
# than this is recycled.
timeout = 30
graceful_timeout = 10

# Only the reverse proxy (Nginx) may set the client address via X-Forwarded-For.
forwarded_allow_ips = os.getenv("FORWARDED_ALLOW_IPS", "127.0.0.1")

# --- Logging ---
accesslog = "-"
errorlog = "-"
loglevel = "info"
