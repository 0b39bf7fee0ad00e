import multiprocessing
import os

# Gunicorn Production Configuration
# Usage: gunicorn -c gunicorn_config.py wsgi:app
bind = f"0.0.0.0:{os.environ.get('PORT', '8000')}"

# The rate limiter and login lockout live in process memory, so one
# worker process keeps them consistent; threads handle concurrency.
workers = int(os.environ.get('WEB_CONCURRENCY', 1))
threads = max(2, multiprocessing.cpu_count())
worker_class = 'gthread'

# Resilience
timeout = 60
max_requests = 1000
max_requests_jitter = 100
keepalive = 5

# Logging
accesslog = '-'       # Stdout
errorlog = '-'        # Stderr
loglevel = os.environ.get('LOG_LEVEL', 'info').lower()
capture_output = True
