import json
import os

from mirrorsync.constants import DEFAULT_TENANT, TASK_RETRIES, WORKER_COUNT
from mirrorsync.paths import CONFIG_DIR, CONFIG_FILE, STATE_DB_FILE


class Config:
    """Persistent configuration manager."""

    def __init__(self, path=None):
        self.path = path or CONFIG_FILE
        self.load_error = None
        self.data = {
            "client_id": "",
            "client_secret": "",
            "tenant_id": DEFAULT_TENANT,
            "notification_url": "",
            "state_db_path": STATE_DB_FILE,
            "worker_count": WORKER_COUNT,
            "task_retries": TASK_RETRIES,
            "download_attachments": False,
        }
        self.load()

    def load(self):
        self.load_error = None
        if os.path.exists(self.path):
            try:
                with open(self.path, "r", encoding="utf-8") as f:
                    saved = json.load(f)
                if not isinstance(saved, dict):
                    raise ValueError("Config payload must be a JSON object.")
                self.data.update(saved)
            except (OSError, json.JSONDecodeError, TypeError, ValueError) as exc:
                self.load_error = str(exc)

    def save(self):
        os.makedirs(os.path.dirname(self.path) or CONFIG_DIR, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(self.data, f, indent=2)

    def get(self, key, default=None):
        return self.data.get(key, default)

    def set(self, key, value):
        self.data[key] = value
        self.save()
