# run.py
import os
import sys

from gunicorn.app.base import BaseApplication


class DigestApplication(BaseApplication):
    def __init__(self, app_uri, options=None):
        self.app_uri = app_uri
        self.options = options or {}
        super().__init__()

    def load_config(self):
        for key, value in self.options.items():
            if key in self.cfg.settings and value is not None:
                self.cfg.set(key.lower(), value)

    def load(self):
        from gunicorn.util import import_app
        return import_app(self.app_uri)


def main():
    sys.path.insert(0, os.getcwd())

    # One worker: the browser profile can only be opened by a single process
    options = {
        "bind": "0.0.0.0:8000",
        "workers": 1,
        "worker_class": "uvicorn.workers.UvicornWorker",
        "proc_name": "chatdigest",
        "timeout": 300,
    }

    DigestApplication("chatdigest.main:app", options).run()

if __name__ == "__main__":
    main()
