"""
Gunicorn Configuration

Production settings for the Group Stage API:
    gunicorn -c deploy/gunicorn.conf.py groupstage.main:app
"""
import os

# Server socket
bind = os.environ.get("BIND", "0.0.0.0:8000")
backlog = 2048

# Worker processes
# The per-tournament mutation lock lives in process memory; with SQLite keep
# a single worker. PostgreSQL row locks (FOR UPDATE) serialize across workers.
workers = int(os.environ.get("WEB_CONCURRENCY", "1"))
worker_class = "uvicorn.workers.UvicornWorker"
worker_connections = 1000
timeout = 120
keepalive = 5

# Logging
accesslog = os.environ.get("GUNICORN_ACCESS_LOG", "-")
errorlog = os.environ.get("GUNICORN_ERROR_LOG", "-")
loglevel = os.environ.get("LOG_LEVEL", "info").lower()
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'

# Process naming
proc_name = "groupstage"

# Server mechanics
daemon = False
pidfile = "/tmp/groupstage-gunicorn.pid"

# Security
limit_request_line = 4094
limit_request_fields = 100
limit_request_field_size = 8190

wsgi_app = "groupstage.main:app"
