# gunicorn.conf.py
import os

# import path to the app factory (PYTHONPATH=/app/src in the container)
wsgi_app = "CMS.main:create_app()"

# networking
host = os.getenv("HOST", "0.0.0.0")
port = int(os.getenv("PORT", "8000"))
bind = f"{host}:{port}"

# workers
# The reminder/digest scheduler runs inside each worker: with more than one
# worker set CMS_SCHEDULER_ENABLED=0 and run `python -m CMS jobs ...` from cron.
workers = int(os.getenv("WEB_CONCURRENCY", "1"))
worker_class = "uvicorn.workers.UvicornWorker"
worker_tmp_dir = "/dev/shm"

# timeouts
timeout = int(os.getenv("GUNICORN_TIMEOUT", "60"))
graceful_timeout = int(os.getenv("GUNICORN_GRACEFUL_TIMEOUT", "30"))
keepalive = int(os.getenv("GUNICORN_KEEPALIVE", "5"))

# logging
accesslog = "-"
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info")
capture_output = True

max_requests = int(os.getenv("GUNICORN_MAX_REQUESTS", "1000"))
max_requests_jitter = int(os.getenv("GUNICORN_MAX_REQUESTS_JITTER", "100"))

LOG_FMT = "%(asctime)s %(levelname)s %(name)s %(message)s %(process)d %(module)s"
logconfig_dict = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "json": {
            "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
            "fmt": LOG_FMT,
        }
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "json",
            "stream": "ext://sys.stdout",
        }
    },
    "root": {"level": os.getenv("LOG_LEVEL", "INFO").upper(), "handlers": ["console"]},
    "loggers": {
        "uvicorn":        {"level": "INFO", "handlers": ["console"], "propagate": False},
        "uvicorn.error":  {"level": "INFO", "handlers": ["console"], "propagate": False},
        "uvicorn.access": {"level": "INFO", "handlers": ["console"], "propagate": False},
    },
}
