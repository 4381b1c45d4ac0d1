import os


ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
CONFIG_DIR = os.path.join(ROOT_DIR, "mirrorsync_config")
CONFIG_FILE = os.path.join(CONFIG_DIR, "config.json")
STATE_DB_FILE = os.path.join(CONFIG_DIR, "mirror.db")
